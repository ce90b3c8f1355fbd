"""
Navigation: node registry, history, restrictions, lifecycle hooks and the runtime.
"""

from .back_handler import BackBehavior, BackHandlerRegistry
from .builder import FlowBuilder
from .errors import (
    CycleDetected,
    DuplicateSiblingName,
    FlowError,
    FlowErrorType,
    InvalidNode,
    MissingParent,
    StructuralError,
)
from .history import NavigationHistory
from .lifecycle import HookOutcome, HookResult, run_hook
from .registry import NodeRegistry, make_id
from .runtime import NavigationRuntime
from .types import (
    AtEndPolicy,
    FlowEvent,
    FlowFlags,
    FlowNode,
    HistoryEntry,
    NavigationOptions,
    NodeKind,
    Restriction,
)

__all__ = [
    'BackBehavior',
    'BackHandlerRegistry',
    'FlowBuilder',
    'CycleDetected',
    'DuplicateSiblingName',
    'FlowError',
    'FlowErrorType',
    'InvalidNode',
    'MissingParent',
    'StructuralError',
    'NavigationHistory',
    'HookOutcome',
    'HookResult',
    'run_hook',
    'NodeRegistry',
    'make_id',
    'NavigationRuntime',
    'AtEndPolicy',
    'FlowEvent',
    'FlowFlags',
    'FlowNode',
    'HistoryEntry',
    'NavigationOptions',
    'NodeKind',
    'Restriction',
]
