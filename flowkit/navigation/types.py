"""
Core data types for flow navigation.
"""

import time
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .errors import InvalidNode


class NodeKind(str, Enum):
    """Kinds of navigable nodes."""
    PACK = "pack"
    PARENT = "parent"
    MODAL = "modal"
    TAB = "tab"
    DRAWER = "drawer"
    CHILD = "child"

    @classmethod
    def coerce(cls, value: Union[str, "NodeKind"]) -> "NodeKind":
        if isinstance(value, NodeKind):
            return value
        value = _KIND_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            raise InvalidNode(f"Unknown node kind '{value}'") from None

    @property
    def is_container(self) -> bool:
        return self is not NodeKind.CHILD


_KIND_ALIASES = {
    "page": NodeKind.PARENT,
    "tab-parent": NodeKind.TAB,
    "tab_parent": NodeKind.TAB,
    "drawer-parent": NodeKind.DRAWER,
    "drawer_parent": NodeKind.DRAWER,
}


@dataclass(frozen=True)
class Restriction:
    """A user-facing explanation for a blocked transition."""
    title: str = "Restricted"
    message: str = ""


# bool, message string, {"title", "message"} mapping or a Restriction
RestrictionSpec = Union[None, bool, str, Mapping[str, Any], Restriction]
Hook = Callable[..., Any]


@dataclass
class AtEndPolicy:
    """What `next` does once it runs past the last sibling.

    `end_with` is one of "parent", "self", "element" or a callable that
    receives an AtEndContext and returns a bool or a dict with any of
    `handled`, `dismount`, `clean_up`, `reset_state`.
    """
    end_with: Union[str, Callable[..., Any]] = "parent"
    element: Optional[str] = None
    clean_up: bool = False
    reset_state: bool = False

    @classmethod
    def coerce(cls, value: Any) -> Optional["AtEndPolicy"]:
        if value is None or isinstance(value, AtEndPolicy):
            return value
        if isinstance(value, str) or callable(value):
            return cls(end_with=value)
        if isinstance(value, Mapping):
            return cls(
                end_with=value.get("end_with", value.get("endWith", "parent")),
                element=value.get("element"),
                clean_up=bool(value.get("clean_up", value.get("cleanUp", False))),
                reset_state=bool(value.get("reset_state", value.get("resetState", False))),
            )
        raise TypeError(f"Unsupported at_end policy: {value!r}")


@dataclass
class BaseProps:
    title: Optional[str] = None
    icon: Optional[str] = None
    is_restricted_in: RestrictionSpec = None
    is_restricted_out: RestrictionSpec = None
    on_open: Optional[Hook] = None
    on_switching: Optional[Hook] = None
    on_close: Optional[Hook] = None
    on_drag: Optional[Hook] = None
    lifecycle_timeout: Optional[float] = None
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PackProps(BaseProps):
    initial: Optional[str] = None


@dataclass
class ParentProps(BaseProps):
    initial: Optional[str] = None
    at_end: Optional[AtEndPolicy] = None


@dataclass
class ModalProps(ParentProps):
    dismissible: bool = True


@dataclass
class TabParentProps(ParentProps):
    hide_tab_bar: bool = False


@dataclass
class DrawerParentProps(ParentProps):
    side: str = "left"


@dataclass
class ChildProps(BaseProps):
    page: Any = None
    hide_tab: bool = False
    initial: Optional[str] = None
    at_end: Optional[AtEndPolicy] = None


PROPS_BY_KIND = {
    NodeKind.PACK: PackProps,
    NodeKind.PARENT: ParentProps,
    NodeKind.MODAL: ModalProps,
    NodeKind.TAB: TabParentProps,
    NodeKind.DRAWER: DrawerParentProps,
    NodeKind.CHILD: ChildProps,
}

# camelCase spellings accepted from host code
_PROP_ALIASES = {
    "isRestrictedIn": "is_restricted_in",
    "isRestrictedOut": "is_restricted_out",
    "onOpen": "on_open",
    "onSwitching": "on_switching",
    "onClose": "on_close",
    "onDrag": "on_drag",
    "atEnd": "at_end",
    "hideTab": "hide_tab",
}


def props_for_kind(kind: NodeKind, values: Optional[Mapping[str, Any]] = None) -> BaseProps:
    """Build the typed props object for `kind`; unknown keys land in `extras`."""
    props = PROPS_BY_KIND[kind]()
    if values:
        props = merge_props(props, values)
    return props


def merge_props(props: BaseProps, partial: Union[Mapping[str, Any], BaseProps]) -> BaseProps:
    """Shallow-merge `partial` into a copy of `props`.

    A mapping sets exactly the keys it names. A props object contributes the
    fields it sets away from their defaults, so re-registration refreshes
    what the caller declared without wiping anything else.
    """
    if isinstance(partial, BaseProps):
        defaults = type(partial)()
        values = {
            f.name: getattr(partial, f.name)
            for f in fields(partial)
            if f.name != "extras" and getattr(partial, f.name) != getattr(defaults, f.name)
        }
        values["extras"] = partial.extras
    else:
        values = dict(partial)

    known = {f.name for f in fields(props)}
    updates: Dict[str, Any] = {}
    extras = dict(props.extras)
    for key, value in values.items():
        key = _PROP_ALIASES.get(key, key)
        if key == "extras":
            extras.update(value or {})
        elif key == "at_end":
            updates[key] = AtEndPolicy.coerce(value)
        elif key in known:
            updates[key] = value
        else:
            extras[key] = value
    updates["extras"] = extras
    return replace(props, **updates)


@dataclass
class FlowNode:
    """A registered navigable unit."""
    name: str
    kind: NodeKind = NodeKind.CHILD
    parent_id: Optional[str] = None
    props: Optional[BaseProps] = None
    id: str = ""
    handle: int = -1
    created_at: float = field(default_factory=time.time)

    @property
    def title(self) -> str:
        if self.props is not None and self.props.title:
            return self.props.title
        return self.name


@dataclass
class FlowFlags:
    opening: bool = False
    switching: bool = False
    dragging: bool = False
    animating: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "opening": self.opening,
            "switching": self.switching,
            "dragging": self.dragging,
            "animating": self.animating,
        }


@dataclass
class NavigationOptions:
    params: Optional[Dict[str, Any]] = None
    replace: bool = False
    timeout: Optional[float] = None


@dataclass
class HistoryEntry:
    child_id: str
    child_name: str
    timestamp: float = field(default_factory=time.time)
    params: Optional[Dict[str, Any]] = None
    scroll_position: Optional[float] = None
    component_state: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "childId": self.child_id,
            "childName": self.child_name,
            "timestamp": self.timestamp,
        }
        if self.params is not None:
            data["params"] = self.params
        if self.scroll_position is not None:
            data["scrollPosition"] = self.scroll_position
        if self.component_state is not None:
            data["componentState"] = self.component_state
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HistoryEntry":
        return cls(
            child_id=data["childId"],
            child_name=data.get("childName", data["childId"].rsplit(".", 1)[-1]),
            timestamp=float(data.get("timestamp", time.time())),
            params=data.get("params"),
            scroll_position=data.get("scrollPosition"),
            component_state=data.get("componentState"),
        )


@dataclass
class RegistryEvent:
    """Published by the registry on every structural or prop change."""
    type: str
    node_ids: List[str] = field(default_factory=list)


@dataclass
class FlowEvent:
    """Published by the runtime on navigation changes."""
    type: str
    parent_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


@dataclass
class OpenContext:
    """Argument passed to a child's `on_open` hook."""
    parent_id: str
    source: str
    opener: Optional[str] = None
    params: Optional[Dict[str, Any]] = None


@dataclass
class AtEndContext:
    """Argument passed to a callable `at_end.end_with`."""
    parent: FlowNode
    runtime: Any
    registry: Any
    lifecycle_timeout: float
