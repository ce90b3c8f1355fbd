# hierarchy.py
# Description: Tree views and structural validation over the node registry
#
"""
Flow Hierarchy
--------------

Builds anytree mirrors of the registry for:
- Tree printing
- Ancestor / descendant / sibling queries
- Structural validation (cycles, orphans, duplicate sibling names)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from anytree import Node, PreOrderIter, RenderTree
from loguru import logger

from .registry import NodeRegistry
from .types import FlowNode

MAX_RECOMMENDED_DEPTH = 5
_DEPTH_GUARD = 100


@dataclass
class HierarchyReport:
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def build_hierarchy_tree(registry: NodeRegistry, root_id: Optional[str] = None) -> List[Node]:
    """Return anytree roots mirroring the registry (or the subtree at `root_id`)."""

    def build(flow_node: FlowNode, parent: Optional[Node]) -> Node:
        tree_node = Node(
            flow_node.name,
            parent=parent,
            flow_id=flow_node.id,
            kind=flow_node.kind.value,
            title=flow_node.title,
        )
        for child in registry.get_children(flow_node.id):
            build(child, tree_node)
        return tree_node

    if root_id is not None:
        start = registry.get_node(root_id)
        return [build(start, None)] if start is not None else []
    return [build(root, None) for root in registry.get_roots()]


def print_tree(registry: NodeRegistry, root_id: Optional[str] = None) -> str:
    """Render the registry as a box-drawn tree: `name (kind, id: id)` per row."""
    lines = []
    for root in build_hierarchy_tree(registry, root_id):
        for pre, _, tree_node in RenderTree(root):
            lines.append(f"{pre}{tree_node.name} ({tree_node.kind}, id: {tree_node.flow_id})")
    return "\n".join(lines)


def get_ancestors(registry: NodeRegistry, node_id: str) -> List[str]:
    """Ancestor ids from the root down to the direct parent."""
    return [n.id for n in reversed(registry.get_parent_chain(node_id))]


def get_descendants(registry: NodeRegistry, node_id: str) -> List[str]:
    trees = build_hierarchy_tree(registry, node_id)
    if not trees:
        return []
    return [n.flow_id for n in PreOrderIter(trees[0])][1:]


def get_path(registry: NodeRegistry, node_id: str) -> List[str]:
    """Names from the root to `node_id` inclusive."""
    node = registry.get_node(node_id)
    if node is None:
        return []
    return [n.name for n in reversed(registry.get_parent_chain(node_id))] + [node.name]


def get_siblings(registry: NodeRegistry, node_id: str) -> List[str]:
    node = registry.get_node(node_id)
    if node is None:
        return []
    return [n.id for n in registry.get_children(node.parent_id) if n.id != node_id]


def find_root(registry: NodeRegistry, node_id: str) -> Optional[str]:
    node = registry.get_node(node_id)
    if node is None:
        return None
    chain = registry.get_parent_chain(node_id)
    return chain[-1].id if chain else node.id


def compute_depth(registry: NodeRegistry, node_id: str) -> int:
    """Depth by parent links; roots are 0. Stops at a fixed guard on corrupt links."""
    depth = 0
    node = registry.get_node(node_id)
    while node is not None and node.parent_id is not None and depth < _DEPTH_GUARD:
        node = registry.get_node(node.parent_id)
        depth += 1
    return depth


def validate_hierarchy(registry: NodeRegistry) -> HierarchyReport:
    """Check the registry's parent links for cycles, orphans and duplicate sibling names."""
    report = HierarchyReport()
    by_id: Dict[str, FlowNode] = {n.id: n for n in registry.iter_nodes()}

    for node_id, node in by_id.items():
        seen = {node_id}
        current = node
        while current.parent_id is not None:
            if current.parent_id in seen:
                report.errors.append(f"Cycle detected at '{node_id}' via '{current.parent_id}'")
                break
            seen.add(current.parent_id)
            parent = by_id.get(current.parent_id)
            if parent is None:
                if current is node:
                    report.errors.append(f"Orphaned node '{node_id}': parent '{node.parent_id}' not registered")
                break
            current = parent

    names_by_parent: Dict[Optional[str], Dict[str, str]] = {}
    for node_id, node in by_id.items():
        siblings = names_by_parent.setdefault(node.parent_id, {})
        if node.name in siblings:
            report.errors.append(
                f"Duplicate name '{node.name}' under '{node.parent_id or '<root>'}': "
                f"'{siblings[node.name]}' and '{node_id}'"
            )
        else:
            siblings[node.name] = node_id

    for node_id in by_id:
        depth = compute_depth(registry, node_id)
        if depth > MAX_RECOMMENDED_DEPTH:
            report.warnings.append(f"Node '{node_id}' is nested {depth} levels deep")

    report.valid = not report.errors
    if report.errors:
        logger.warning(f"Hierarchy validation found {len(report.errors)} error(s)")
    return report
