"""
flowkit - hierarchical, stack-based navigation and scoped state for Python UIs

A navigation engine that replaces a conventional router: packs, parents and
children (pages, modals, tabs, drawers) are registered in a tree, one child is
active per parent, entry/exit restrictions and async lifecycle hooks guard
every transition, and navigation history plus keyed state are persisted
through a pluggable async storage adapter.
"""

__version__ = "0.1.0"

# Version tuple for programmatic comparison
VERSION_TUPLE = (0, 1, 0)

from .config import FlowSettings, load_flow_config
from .context import FlowContext, create_flow_context
from .logging_config import configure_logging
from .navigation import (
    BackBehavior,
    FlowBuilder,
    FlowNode,
    NavigationOptions,
    NodeKind,
    NodeRegistry,
    NavigationRuntime,
    NavigationHistory,
    Restriction,
)
from .state import PermissionMode, ScopedStateStore, StateStatus

__all__ = [
    "__version__",
    "VERSION_TUPLE",
    "FlowContext",
    "create_flow_context",
    "FlowSettings",
    "load_flow_config",
    "configure_logging",
    "BackBehavior",
    "FlowBuilder",
    "FlowNode",
    "NavigationOptions",
    "NodeKind",
    "NodeRegistry",
    "NavigationRuntime",
    "NavigationHistory",
    "Restriction",
    "PermissionMode",
    "ScopedStateStore",
    "StateStatus",
]
