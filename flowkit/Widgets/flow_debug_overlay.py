# flowkit/Widgets/flow_debug_overlay.py
# Description: Textual widget showing the live flow tree and a rolling runtime event log
#
# Imports
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional
#
# 3rd-Party Imports
from loguru import logger
from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widget import Widget
from textual.widgets import Log, Static, Tree
from textual.widgets.tree import TreeNode
#
# Local Imports
from ..navigation.types import FlowEvent, RegistryEvent

logger = logger.bind(module="flow_debug_overlay")

#
#######################################################################################################################
#
# Classes:

class FlowDebugOverlay(Widget):
    """
    Debug panel for a FlowContext.

    The tree mirrors the registry (active children highlighted) and is rebuilt
    on every registry notification; runtime events are appended to a log that
    keeps the last `max_events` lines.
    """

    DEFAULT_CSS = """
    FlowDebugOverlay {
        width: 100%;
        height: 100%;
        border: round $surface;
        background: $panel;
    }

    .flow-debug-header {
        width: 100%;
        height: 1;
        padding: 0 1;
        background: $surface-darken-1;
        text-style: bold;
    }

    #flow-debug-tree {
        height: 2fr;
    }

    #flow-debug-log {
        height: 1fr;
        border-top: solid $primary;
    }
    """

    def __init__(self, context, max_events: int = 200, **kwargs):
        super().__init__(**kwargs)
        self.context = context
        self.max_events = max_events
        self.events: Deque[str] = deque(maxlen=max_events)
        self._unsubscribers: List[Callable[[], None]] = []

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Static("Flow", classes="flow-debug-header")
            tree: Tree = Tree("flows", id="flow-debug-tree")
            tree.show_root = False
            yield tree
            yield Log(id="flow-debug-log", max_lines=self.max_events)

    def on_mount(self) -> None:
        self._unsubscribers.append(self.context.registry.subscribe(self._on_registry_event))
        self._unsubscribers.append(self.context.runtime.subscribe(self._on_runtime_event))
        self.refresh_tree()

    def on_unmount(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def refresh_tree(self) -> None:
        tree = self.query_one("#flow-debug-tree", Tree)
        tree.clear()
        for root in self.context.registry.debug_tree()["roots"]:
            self._add_entry(tree.root, root, active_id=self.context.runtime.get_active_root())
        tree.root.expand_all()

    def _add_entry(self, parent: TreeNode, entry: Dict[str, Any], active_id: Optional[str]) -> None:
        label = Text(f"{entry['name']} ({entry['kind']})")
        if entry["id"] == active_id:
            label.stylize("bold green")
        node = parent.add(label, data=entry["id"])
        for child in entry["children"]:
            self._add_entry(node, child, active_id=entry["active"])

    def _on_registry_event(self, event: RegistryEvent) -> None:
        if self.is_mounted:
            self.refresh_tree()

    def _on_runtime_event(self, event: FlowEvent) -> None:
        line = f"{event.type} {event.parent_id or '-'}"
        target = event.payload.get("to_id") or event.payload.get("root_id")
        if target:
            line = f"{line} -> {target}"
        self.events.append(line)
        if self.is_mounted:
            self.query_one("#flow-debug-log", Log).write_line(line)
            if event.type == "root:switch":
                self.refresh_tree()

#
# End of flow_debug_overlay.py
#######################################################################################################################
