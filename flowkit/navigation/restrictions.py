"""
Entry/exit restriction checks.

A restriction may be declared as `True`, a message string, a mapping with
`title`/`message`, or a Restriction. The universal check walks the pack
ancestor, the parent, the node itself and finally the enclosing modal; the
first declared restriction wins.
"""

from typing import List, Mapping, Optional

from .registry import NodeRegistry
from .types import FlowNode, NodeKind, Restriction, RestrictionSpec

DEFAULT_TITLE = "Restricted"
DEFAULT_IN_MESSAGE = "You can't open this right now."
DEFAULT_OUT_MESSAGE = "You can't leave this right now."


def normalize_restriction(spec: RestrictionSpec, entering: bool = True) -> Optional[Restriction]:
    if spec is None or spec is False:
        return None
    default_message = DEFAULT_IN_MESSAGE if entering else DEFAULT_OUT_MESSAGE
    if isinstance(spec, Restriction):
        return spec
    if spec is True:
        return Restriction(DEFAULT_TITLE, default_message)
    if isinstance(spec, str):
        return Restriction(DEFAULT_TITLE, spec or default_message)
    if isinstance(spec, Mapping):
        return Restriction(
            str(spec.get("title") or DEFAULT_TITLE),
            str(spec.get("message") or default_message),
        )
    return Restriction(DEFAULT_TITLE, default_message) if spec else None


def _levels(registry: NodeRegistry, node: FlowNode) -> List[FlowNode]:
    chain = registry.get_parent_chain(node.id)
    levels: List[FlowNode] = []
    pack = next((n for n in chain if n.kind is NodeKind.PACK), None)
    if pack is not None:
        levels.append(pack)
    if chain and chain[0] is not pack:
        levels.append(chain[0])
    levels.append(node)
    modal = next((n for n in chain if n.kind is NodeKind.MODAL), None)
    if modal is not None and modal not in levels:
        levels.append(modal)
    return levels


def check_restriction(registry: NodeRegistry, node_id: str, entering: bool) -> Optional[Restriction]:
    """First restriction found for entering (or leaving) `node_id`, or None if allowed."""
    node = registry.get_node(node_id)
    if node is None:
        return None
    for level in _levels(registry, node):
        spec = level.props.is_restricted_in if entering else level.props.is_restricted_out
        restriction = normalize_restriction(spec, entering)
        if restriction is not None:
            return restriction
    return None


def is_restricted_in(node: FlowNode) -> bool:
    """The node's own entry flag, ignoring ancestors. Used for sibling skipping."""
    return normalize_restriction(node.props.is_restricted_in) is not None
