"""
Node registry for flow navigation.

Owns the tree of packs, parents and children. Nodes are addressed publicly by
dotted id ("home.orders.detail"); internally they live in an arena list and
are linked by integer handle, with a per-parent name index for O(1) sibling
lookups.
"""

import copy
from typing import Callable, Dict, Iterator, List, Optional, Union

from loguru import logger

from .errors import CycleDetected, DuplicateSiblingName, InvalidNode, MissingParent
from .types import (
    BaseProps,
    FlowNode,
    NodeKind,
    RegistryEvent,
    merge_props,
    props_for_kind,
)

logger = logger.bind(module="flowkit.registry")

RegistryListener = Callable[[RegistryEvent], None]

# Parent key used for the name index of root nodes
_ROOT = -1


def make_id(parent_id: Optional[str], name: str) -> str:
    """Build the public dotted id of a node."""
    if not name or not name.strip():
        raise InvalidNode("Node name must be a non-empty string")
    if "." in name:
        raise InvalidNode(f"Node name '{name}' must not contain '.'")
    return f"{parent_id}.{name}" if parent_id else name


class NodeRegistry:
    """
    Registry of navigable nodes.

    Registration is idempotent: registering an id that already exists merges
    the incoming props into the stored ones. Every mutation is published to
    subscribers as a RegistryEvent.
    """

    def __init__(self):
        self._arena: List[Optional[FlowNode]] = []
        self._handles: Dict[str, int] = {}
        self._children: Dict[int, List[int]] = {_ROOT: []}
        self._names: Dict[int, Dict[str, int]] = {_ROOT: {}}
        self._current_child: Dict[str, str] = {}
        self._tab_visibility: Dict[str, bool] = {}
        self._drawer_visibility: Dict[str, bool] = {}
        self._listeners: List[RegistryListener] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_node(self, node: FlowNode) -> FlowNode:
        """
        Register or refresh a node.

        Raises:
            InvalidNode: empty name, or a non-pack node without a parent
            MissingParent: parent_id does not reference a registered node
            DuplicateSiblingName: another sibling already uses the name
            CycleDetected: re-registration would move a node under itself
        """
        kind = NodeKind.coerce(node.kind)
        parent_id = node.parent_id

        if kind is NodeKind.PACK and parent_id is not None:
            logger.warning(f"Pack '{node.name}' declared parent '{parent_id}'; packs are always roots")
            parent_id = None
        if kind is not NodeKind.PACK and parent_id is None:
            raise InvalidNode(f"Only packs may be roots; '{node.name}' is a {kind.value}", node_id=node.id or None)
        if parent_id is not None and parent_id not in self._handles:
            raise MissingParent(parent_id, node.name)

        node_id = node.id or make_id(parent_id, node.name)
        if not node.name:
            raise InvalidNode("Node name must be a non-empty string", node_id=node_id)

        parent_handle = self._handles[parent_id] if parent_id is not None else _ROOT
        existing_handle = self._handles.get(node_id)
        sibling = self._names[parent_handle].get(node.name)
        if sibling is not None and sibling != existing_handle:
            raise DuplicateSiblingName(parent_id, node.name)

        if existing_handle is not None:
            return self._refresh(existing_handle, node, kind, parent_id, parent_handle)

        handle = len(self._arena)
        stored = FlowNode(
            name=node.name,
            kind=kind,
            parent_id=parent_id,
            props=self._initial_props(kind, node.props),
            id=node_id,
            handle=handle,
            created_at=node.created_at,
        )
        self._arena.append(stored)
        self._handles[node_id] = handle
        self._children[handle] = []
        self._names[handle] = {}
        self._children[parent_handle].append(handle)
        self._names[parent_handle][stored.name] = handle

        logger.debug(f"Registered {kind.value} '{node_id}'")
        self._notify(RegistryEvent("register", [node_id]))
        return stored

    def _initial_props(self, kind: NodeKind, props) -> BaseProps:
        if props is None:
            return props_for_kind(kind)
        if isinstance(props, BaseProps):
            if isinstance(props, type(props_for_kind(kind))):
                return props
            return merge_props(props_for_kind(kind), props)
        return props_for_kind(kind, props)

    def _refresh(self, handle: int, node: FlowNode, kind: NodeKind,
                 parent_id: Optional[str], parent_handle: int) -> FlowNode:
        stored = self._arena[handle]
        old_parent_handle = self._handles[stored.parent_id] if stored.parent_id is not None else _ROOT

        if parent_handle != old_parent_handle:
            if parent_handle != _ROOT and (parent_handle == handle or
                                           handle in self._ancestor_handles(parent_handle)):
                raise CycleDetected(stored.id, parent_id)
            self._children[old_parent_handle].remove(handle)
            del self._names[old_parent_handle][stored.name]
            self._children[parent_handle].append(handle)
            self._names[parent_handle][node.name] = handle
        elif node.name != stored.name:
            del self._names[parent_handle][stored.name]
            self._names[parent_handle][node.name] = handle

        if kind is not stored.kind:
            stored.props = merge_props(props_for_kind(kind), stored.props)
        if node.props is not None:
            stored.props = merge_props(stored.props, node.props)
        stored.kind = kind
        stored.name = node.name
        stored.parent_id = parent_id

        logger.debug(f"Refreshed node '{stored.id}'")
        self._notify(RegistryEvent("update", [stored.id]))
        return stored

    def unregister_node(self, node_id: str) -> List[str]:
        """Remove a node and its whole subtree. Returns the removed ids, leaves first."""
        handle = self._handles.get(node_id)
        if handle is None:
            return []

        doomed = list(self._subtree_handles(handle))
        doomed.reverse()
        removed: List[str] = []
        for h in doomed:
            node = self._arena[h]
            parent_handle = self._handles[node.parent_id] if node.parent_id is not None else _ROOT
            if parent_handle in self._children:
                self._children[parent_handle].remove(h)
                self._names[parent_handle].pop(node.name, None)
            del self._children[h]
            del self._names[h]
            del self._handles[node.id]
            self._arena[h] = None
            self._current_child.pop(node.id, None)
            self._tab_visibility.pop(node.id, None)
            self._drawer_visibility.pop(node.id, None)
            if node.parent_id is not None and self._current_child.get(node.parent_id) == node.id:
                del self._current_child[node.parent_id]
            removed.append(node.id)

        logger.debug(f"Unregistered '{node_id}' ({len(removed)} node(s))")
        self._notify(RegistryEvent("unregister", removed))
        return removed

    def update_node_props(self, node_id: str, partial) -> bool:
        """Shallow-merge `partial` into the node's props. False if the node is unknown."""
        node = self.get_node(node_id)
        if node is None:
            logger.warning(f"update_node_props: unknown node '{node_id}'")
            return False
        node.props = merge_props(node.props, partial)
        self._notify(RegistryEvent("props", [node_id]))
        return True

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def has_node(self, node_id: Optional[str]) -> bool:
        return node_id is not None and node_id in self._handles

    def get_node(self, node_id: Optional[str]) -> Optional[FlowNode]:
        if node_id is None:
            return None
        handle = self._handles.get(node_id)
        return self._arena[handle] if handle is not None else None

    def get_children(self, node_id: Optional[str]) -> List[FlowNode]:
        """Children in registration order. `None` lists the roots."""
        handle = _ROOT if node_id is None else self._handles.get(node_id)
        if handle is None:
            return []
        return [self._arena[h] for h in self._children[handle]]

    def get_child_by_name(self, parent_id: Optional[str], name: str) -> Optional[FlowNode]:
        parent_handle = _ROOT if parent_id is None else self._handles.get(parent_id)
        if parent_handle is None:
            return None
        handle = self._names[parent_handle].get(name)
        return self._arena[handle] if handle is not None else None

    def get_parent_chain(self, node_id: str) -> List[FlowNode]:
        """Ancestors of `node_id`, nearest first, ending at the root."""
        handle = self._handles.get(node_id)
        if handle is None:
            return []
        return [self._arena[h] for h in self._ancestor_handles(handle)]

    def get_roots(self) -> List[FlowNode]:
        return self.get_children(None)

    def get_mom(self, node_id: str) -> Optional[str]:
        """Nearest pack containing `node_id` (the node itself if it is a pack)."""
        node = self.get_node(node_id)
        if node is None:
            return None
        if node.kind is NodeKind.PACK:
            return node.id
        for ancestor in self.get_parent_chain(node_id):
            if ancestor.kind is NodeKind.PACK:
                return ancestor.id
        return None

    def find_parent_by_child(self, child_id: str) -> Optional[str]:
        node = self.get_node(child_id)
        return node.parent_id if node is not None else None

    def iter_nodes(self) -> Iterator[FlowNode]:
        return (node for node in self._arena if node is not None)

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._handles

    def _ancestor_handles(self, handle: int) -> List[int]:
        chain = []
        node = self._arena[handle]
        seen = {handle}
        while node.parent_id is not None:
            h = self._handles[node.parent_id]
            if h in seen:
                break
            seen.add(h)
            chain.append(h)
            node = self._arena[h]
        return chain

    def _subtree_handles(self, handle: int) -> Iterator[int]:
        stack = [handle]
        while stack:
            h = stack.pop()
            yield h
            stack.extend(reversed(self._children[h]))

    # ------------------------------------------------------------------
    # Current-child mirror (written by the runtime)
    # ------------------------------------------------------------------

    def set_current_child(self, parent_id: str, child_id: Optional[str]) -> None:
        if child_id is None:
            if self._current_child.pop(parent_id, None) is not None:
                self._notify(RegistryEvent("current", [parent_id]))
            return
        child = self.get_node(child_id)
        if child is None or child.parent_id != parent_id:
            logger.warning(f"set_current_child: '{child_id}' is not a live child of '{parent_id}'")
            return
        if self._current_child.get(parent_id) == child_id:
            return
        self._current_child[parent_id] = child_id
        self._notify(RegistryEvent("current", [parent_id, child_id]))

    def get_current_child(self, parent_id: str) -> Optional[str]:
        return self._current_child.get(parent_id)

    def find_top_parent_with_active_child(self) -> Optional[str]:
        """Most recently registered parent that has, or contains, an active child."""
        for node in reversed([n for n in self._arena if n is not None]):
            if node.id in self._current_child:
                return node.id
            for child in self.get_children(node.id):
                if child.id in self._current_child:
                    return node.id
        return None

    def has_active_modal(self) -> bool:
        for parent_id, child_id in self._current_child.items():
            parent = self.get_node(parent_id)
            child = self.get_node(child_id)
            if parent is None or child is None:
                continue
            if parent.kind is NodeKind.MODAL or child.props.extras.get("modal"):
                return True
        return False

    def get_active_child_title(self, parent_id: str) -> str:
        """Title of the deepest active descendant of `parent_id`."""
        visited = set()
        title = ""
        current = parent_id
        while current is not None and current not in visited:
            visited.add(current)
            child = self.get_node(self._current_child.get(current))
            if child is None:
                break
            title = child.title
            current = child.id
        return title

    # ------------------------------------------------------------------
    # Tab bar / drawer visibility
    # ------------------------------------------------------------------

    def set_tab_visible(self, node_id: str, visible: bool) -> None:
        if self._tab_visibility.get(node_id, True) == visible:
            return
        self._tab_visibility[node_id] = visible
        self._notify(RegistryEvent("visibility", [node_id]))

    def is_tab_visible(self, node_id: str) -> bool:
        return self._tab_visibility.get(node_id, True)

    def set_drawer_visible(self, node_id: str, visible: bool) -> None:
        if self._drawer_visibility.get(node_id, False) == visible:
            return
        self._drawer_visibility[node_id] = visible
        self._notify(RegistryEvent("visibility", [node_id]))

    def is_drawer_visible(self, node_id: str) -> bool:
        return self._drawer_visibility.get(node_id, False)

    # ------------------------------------------------------------------
    # Backup / restore
    # ------------------------------------------------------------------

    def backup(self) -> Dict[str, object]:
        """Snapshot of the full registry state. Props objects are shared, not copied."""
        return {
            "arena": [copy.copy(n) if n is not None else None for n in self._arena],
            "handles": dict(self._handles),
            "children": {h: list(c) for h, c in self._children.items()},
            "names": {h: dict(n) for h, n in self._names.items()},
            "current_child": dict(self._current_child),
            "tab_visibility": dict(self._tab_visibility),
            "drawer_visibility": dict(self._drawer_visibility),
        }

    def restore(self, snapshot: Dict[str, object]) -> None:
        self._arena = snapshot["arena"]
        self._handles = snapshot["handles"]
        self._children = snapshot["children"]
        self._names = snapshot["names"]
        self._current_child = snapshot["current_child"]
        self._tab_visibility = snapshot["tab_visibility"]
        self._drawer_visibility = snapshot["drawer_visibility"]
        self._notify(RegistryEvent("restore", list(self._handles)))

    def safe_update(self, fn: Callable[["NodeRegistry"], object]):
        """Run `fn(registry)`; roll every change back if it raises, then re-raise."""
        snapshot = self.backup()
        try:
            return fn(self)
        except Exception:
            logger.warning("Registry update failed, restoring previous state")
            self.restore(snapshot)
            raise

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(self, callback: RegistryListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, event: RegistryEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Registry listener {listener!r} failed on '{event.type}': {e}")

    def debug_tree(self) -> Dict[str, Union[str, list, None]]:
        """Nested dict view of the registry for debugging tools."""

        def describe(node: FlowNode) -> Dict[str, Union[str, list, None]]:
            return {
                "id": node.id,
                "name": node.name,
                "kind": node.kind.value,
                "active": self._current_child.get(node.id),
                "children": [describe(c) for c in self.get_children(node.id)],
            }

        return {"roots": [describe(r) for r in self.get_roots()]}
