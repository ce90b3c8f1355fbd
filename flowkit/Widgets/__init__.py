"""Textual widgets for inspecting a running flow context."""

from .flow_debug_overlay import FlowDebugOverlay

__all__ = ["FlowDebugOverlay"]
