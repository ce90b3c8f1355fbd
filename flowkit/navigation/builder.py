"""
Fluent construction of a container and its children.

    parent_id = (FlowBuilder(context)
                 .create("modal")
                 .named("checkout")
                 .under("shop")
                 .child("cart")
                 .child("payment", title="Pay")
                 .props(at_end="parent")
                 .build())
"""

from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from .errors import InvalidNode
from .registry import NodeRegistry
from .types import FlowNode, NodeKind


class FlowBuilder:
    """Collects a container declaration and registers it in one step."""

    def __init__(self, context=None, registry: Optional[NodeRegistry] = None):
        if registry is None:
            if context is None:
                raise ValueError("FlowBuilder needs a context or a registry")
            registry = context.registry
        self.registry = registry
        self._kind = NodeKind.PARENT
        self._name = ""
        self._parent_id: Optional[str] = None
        self._props: Dict[str, Any] = {}
        self._children: List[Tuple[str, Dict[str, Any]]] = []

    def create(self, kind) -> "FlowBuilder":
        self._kind = NodeKind.coerce(kind)
        return self

    def named(self, name: str) -> "FlowBuilder":
        self._name = name
        return self

    def under(self, parent_id: Optional[str]) -> "FlowBuilder":
        self._parent_id = parent_id
        return self

    def child(self, name: str, **props: Any) -> "FlowBuilder":
        self._children.append((name, props))
        return self

    def props(self, **props: Any) -> "FlowBuilder":
        self._props.update(props)
        return self

    def build(self, should_build: bool = True) -> Optional[str]:
        """
        Register the container and its children; returns the container id.

        Registration is all-or-nothing: a structural error in any child rolls
        the registry back before the error propagates.
        """
        if not should_build:
            return None
        if not self._name:
            raise InvalidNode("FlowBuilder.build() called before named()")

        def register(registry: NodeRegistry) -> str:
            parent = registry.register_node(FlowNode(
                name=self._name, kind=self._kind, parent_id=self._parent_id, props=dict(self._props),
            ))
            for name, child_props in self._children:
                registry.register_node(FlowNode(
                    name=name, kind=NodeKind.CHILD, parent_id=parent.id, props=dict(child_props),
                ))
            return parent.id

        node_id = self.registry.safe_update(register)
        logger.debug(f"Built {self._kind.value} '{node_id}' with {len(self._children)} child(ren)")
        return node_id
