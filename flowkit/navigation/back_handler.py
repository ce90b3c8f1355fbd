"""
Back-button routing.

Hosts forward hardware/escape back presses here. Nested flows register a
handler with a priority; the highest priority handler decides what the press
does. With nothing registered the press means `prev` on the parent the user is
looking at. A False result tells the host to handle the press itself.
"""

import inspect
from dataclasses import dataclass, field
from enum import Enum
from itertools import count
from typing import Any, Callable, List, Optional

from loguru import logger

logger = logger.bind(module="flowkit.back")


class BackBehavior(str, Enum):
    PREV = "prev"
    CLOSE = "close"
    NONE = "none"
    CUSTOM = "custom"


@dataclass
class BackHandler:
    parent_id: str
    behavior: BackBehavior = BackBehavior.PREV
    handler: Optional[Callable[[], Any]] = None
    priority: int = 0
    order: int = field(default=0, compare=False)


class BackHandlerRegistry:
    """Priority-ordered back handlers, one context-owned instance."""

    def __init__(self):
        self._handlers: List[BackHandler] = []
        self._counter = count()

    def register(self, parent_id: str, behavior=BackBehavior.PREV,
                 handler: Optional[Callable[[], Any]] = None, priority: int = 0) -> Callable[[], None]:
        """
        Register a back handler for `parent_id`.

        Args:
            behavior: a BackBehavior or its string value
            handler: required for CUSTOM; may be sync or async and returns
                True when it consumed the press
            priority: higher runs first; ties go to the newest registration

        Returns:
            A callable that removes the handler.
        """
        behavior = BackBehavior(behavior)
        if behavior is BackBehavior.CUSTOM and handler is None:
            raise ValueError("A custom back handler needs a handler callable")
        entry = BackHandler(parent_id, behavior, handler, priority, next(self._counter))
        self._handlers.append(entry)
        logger.debug(f"Back handler for '{parent_id}' ({behavior.value}, priority {priority})")

        def unregister() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unregister

    def active_handler(self, parent_id: Optional[str] = None) -> Optional[BackHandler]:
        candidates = [h for h in self._handlers if parent_id is None or h.parent_id == parent_id]
        if not candidates:
            return None
        return max(candidates, key=lambda h: (h.priority, h.order))

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)

    async def handle_back_press(self, runtime, parent_id: Optional[str] = None) -> bool:
        """Route one back press. Returns True when the flow consumed it."""
        entry = self.active_handler(parent_id)
        if entry is None:
            target = parent_id or runtime.registry.find_top_parent_with_active_child()
            if target is None:
                return False
            return await runtime.prev(target)

        if entry.behavior is BackBehavior.NONE:
            return False
        if entry.behavior is BackBehavior.CLOSE:
            return await runtime.close(entry.parent_id)
        if entry.behavior is BackBehavior.CUSTOM:
            try:
                result = entry.handler()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                logger.warning(f"Custom back handler for '{entry.parent_id}' failed: {e}")
                return False
            return bool(result)
        return await runtime.prev(entry.parent_id)
