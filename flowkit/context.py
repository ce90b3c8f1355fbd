"""
Root container for one flow runtime.

The application root creates a FlowContext and hands it to every consumer;
nothing in flowkit keeps module-level registries, so tests and embedded
hosts can run several independent contexts side by side.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from loguru import logger

from .config import FlowSettings, load_flow_config
from .navigation.back_handler import BackHandlerRegistry
from .navigation.builder import FlowBuilder
from .navigation.hierarchy import HierarchyReport, print_tree, validate_hierarchy
from .navigation.history import NavigationHistory
from .navigation.registry import NodeRegistry
from .navigation.runtime import NavigationRuntime
from .navigation.types import Restriction
from .state.state_store import ScopedStateStore
from .state.storage import FlowStorage, create_storage


@dataclass
class FlowContext:
    """Owns the registry, history, state store and runtime of one flow tree."""
    settings: FlowSettings
    storage: FlowStorage
    registry: NodeRegistry
    history: NavigationHistory
    state: ScopedStateStore
    runtime: NavigationRuntime
    back_handlers: BackHandlerRegistry = field(default_factory=BackHandlerRegistry)

    def builder(self) -> FlowBuilder:
        return FlowBuilder(self)

    def debug_tree(self) -> Dict[str, Any]:
        """Registry tree annotated with runtime stacks and the active root."""
        tree = self.registry.debug_tree()

        def annotate(entry: Dict[str, Any]) -> None:
            entry["stack"] = self.runtime.get_stack(entry["id"])
            entry["flags"] = self.runtime.get_flags(entry["id"]).to_dict()
            for child in entry["children"]:
                annotate(child)

        for root in tree["roots"]:
            annotate(root)
        tree["active_root"] = self.runtime.get_active_root()
        return tree

    def state_registry_snapshot(self) -> Dict[str, Any]:
        snapshot = self.state.snapshot()
        snapshot["history"] = self.history.get_history_summary()
        return snapshot

    def print_tree(self, root_id: Optional[str] = None) -> str:
        return print_tree(self.registry, root_id)

    def validate_hierarchy(self) -> HierarchyReport:
        return validate_hierarchy(self.registry)

    async def flush(self, timeout: float = 10.0) -> bool:
        """Wait for pending history and state writes."""
        history_ok = await self.history.flush(timeout)
        state_ok = await self.state.flush(timeout)
        return history_ok and state_ok

    async def shutdown(self) -> None:
        self.runtime.dispose()
        await self.flush()
        logger.debug("Flow context shut down")


def create_flow_context(
    config: Optional[Dict[str, Any]] = None,
    storage: Optional[FlowStorage] = None,
    alert_handler: Optional[Callable[[Restriction], Any]] = None,
    settings: Optional[FlowSettings] = None,
) -> FlowContext:
    """
    Wire up a complete flow context.

    Args:
        config: configuration mapping; the user's config file is read when omitted
        storage: storage to use instead of the configured backend
        alert_handler: called with a Restriction whenever navigation is blocked
        settings: ready-made settings, overriding `config`
    """
    if settings is None:
        settings = FlowSettings.from_config(config if config is not None else load_flow_config())
    if storage is None:
        storage = create_storage(settings.storage_backend, settings.storage_path)

    registry = NodeRegistry()
    history = NavigationHistory(storage, max_history=settings.max_history, persist=settings.persist_history)
    state = ScopedStateStore(storage, registry=registry, settings=settings)
    runtime = NavigationRuntime(registry, history, state, settings=settings, alert_handler=alert_handler)
    logger.debug(f"Created flow context (storage={settings.storage_backend})")
    return FlowContext(settings, storage, registry, history, state, runtime)
