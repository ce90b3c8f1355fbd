"""
Per-parent navigation history.

Back stacks are bounded and persisted under `history_<parent_id>`; forward
stacks are memory only and cleared by every push. Mutations are synchronous;
persistence is write-behind and never blocks a transition.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from ..state.storage import FlowStorage, WriteBehind
from .types import HistoryEntry

logger = logger.bind(module="flowkit.history")

HISTORY_KEY_PREFIX = "history_"


class NavigationHistory:
    """Back/forward stacks of visited children, one pair per parent."""

    def __init__(self, storage: Optional[FlowStorage] = None, max_history: int = 50, persist: bool = True):
        self.storage = storage if storage is not None else FlowStorage()
        self.max_history = max_history
        self.persist = persist
        self._back: Dict[str, List[HistoryEntry]] = {}
        self._forward: Dict[str, List[HistoryEntry]] = {}
        self._component_state: Dict[str, Any] = {}
        self._loaded: set = set()
        self._loading: Dict[str, asyncio.Future] = {}
        self._writer = WriteBehind(self.storage, self._snapshot, name="history")

    # ------------------------------------------------------------------
    # Loading / persistence
    # ------------------------------------------------------------------

    async def ensure_loaded(self, parent_id: str) -> None:
        """Load the persisted back stack for `parent_id` once."""
        if not self.persist or parent_id in self._loaded:
            return
        self._loaded.add(parent_id)
        data = await self.storage.load(self._key(parent_id))
        self._merge_loaded(parent_id, data)

    def _merge_loaded(self, parent_id: str, data: Any) -> None:
        if not isinstance(data, dict) or not isinstance(data.get("stack"), list):
            return
        loaded: List[HistoryEntry] = []
        for raw in data["stack"]:
            try:
                loaded.append(HistoryEntry.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed history entry for '{parent_id}': {e}")
        # entries pushed before the load finished stay on top
        merged = loaded + self._back.get(parent_id, [])
        self._back[parent_id] = merged[-self.max_history:]
        logger.debug(f"Loaded {len(loaded)} history entries for '{parent_id}'")

    def _touch(self, parent_id: str) -> None:
        if not self.persist or parent_id in self._loaded:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._loaded.add(parent_id)
            return
        task = asyncio.ensure_future(self._load_then_save(parent_id))
        self._loading[parent_id] = task
        self._writer.track(task)

    async def _load_then_save(self, parent_id: str) -> None:
        try:
            await self.ensure_loaded(parent_id)
        finally:
            self._loading.pop(parent_id, None)
        self._save(parent_id)

    def _key(self, parent_id: str) -> str:
        return f"{HISTORY_KEY_PREFIX}{parent_id}"

    def _snapshot(self, key: str) -> Optional[Dict[str, Any]]:
        parent_id = key[len(HISTORY_KEY_PREFIX):]
        stack = self._back.get(parent_id)
        if not stack:
            return None
        return {"stack": [entry.to_dict() for entry in stack]}

    def _save(self, parent_id: str) -> None:
        # a pending lazy load saves once it has merged
        if self.persist and parent_id not in self._loading:
            self._writer.mark_dirty(self._key(parent_id))

    async def flush(self, timeout: float = 10.0) -> bool:
        """Wait for pending loads and writes."""
        return await self._writer.flush(timeout)

    # ------------------------------------------------------------------
    # Stack operations
    # ------------------------------------------------------------------

    def push(self, parent_id: str, entry: HistoryEntry) -> None:
        if not parent_id:
            return
        self._touch(parent_id)
        stack = self._back.setdefault(parent_id, [])
        stack.append(entry)
        if len(stack) > self.max_history:
            del stack[0]
        self._forward[parent_id] = []
        self._save(parent_id)

    def pop(self, parent_id: str) -> Optional[HistoryEntry]:
        """Move the newest back entry onto the forward stack and return it."""
        stack = self._back.get(parent_id)
        if not stack:
            return None
        entry = stack.pop()
        self._forward.setdefault(parent_id, []).append(entry)
        self._save(parent_id)
        return entry

    def peek(self, parent_id: str) -> Optional[HistoryEntry]:
        stack = self._back.get(parent_id)
        return stack[-1] if stack else None

    def can_go_back(self, parent_id: str) -> bool:
        return bool(self._back.get(parent_id))

    def can_go_forward(self, parent_id: str) -> bool:
        return bool(self._forward.get(parent_id))

    def peek_forward(self, parent_id: str) -> Optional[HistoryEntry]:
        stack = self._forward.get(parent_id)
        return stack[-1] if stack else None

    def pop_forward(self, parent_id: str) -> Optional[HistoryEntry]:
        """Redo: move the newest forward entry back onto the back stack."""
        stack = self._forward.get(parent_id)
        if not stack:
            return None
        entry = stack.pop()
        back = self._back.setdefault(parent_id, [])
        back.append(entry)
        if len(back) > self.max_history:
            del back[0]
        self._save(parent_id)
        return entry

    def update_scroll_position(self, parent_id: str, position: float) -> None:
        entry = self.peek(parent_id)
        if entry is not None:
            entry.scroll_position = position
            self._save(parent_id)

    def clear_history(self, parent_id: str) -> None:
        self._back.pop(parent_id, None)
        self._forward.pop(parent_id, None)
        self._save(parent_id)

    def get_back_stack(self, parent_id: str) -> List[HistoryEntry]:
        return list(self._back.get(parent_id, []))

    def get_forward_stack(self, parent_id: str) -> List[HistoryEntry]:
        return list(self._forward.get(parent_id, []))

    # ------------------------------------------------------------------
    # Component state
    # ------------------------------------------------------------------

    def save_component_state(self, child_id: str, state: Any) -> None:
        if child_id:
            self._component_state[child_id] = state

    def restore_component_state(self, child_id: str) -> Any:
        return self._component_state.get(child_id)

    def clear_component_state(self, child_id: str) -> None:
        self._component_state.pop(child_id, None)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def referenced_ids(self) -> set:
        ids = set()
        for stacks in (self._back, self._forward):
            for stack in stacks.values():
                ids.update(entry.child_id for entry in stack)
        return ids

    def cleanup_orphaned_states(self, candidate_ids: Optional[Iterable[str]] = None) -> List[str]:
        """
        Return ids not referenced by any back or forward stack.

        Candidates are the ids holding component state plus any `candidate_ids`
        the caller tracks. Component state of orphaned ids is dropped here;
        the caller purges whatever else it keeps for them.
        """
        referenced = self.referenced_ids()
        candidates = list(self._component_state)
        for child_id in candidate_ids or ():
            if child_id not in candidates:
                candidates.append(child_id)
        orphaned = [child_id for child_id in candidates if child_id not in referenced]
        for child_id in orphaned:
            self._component_state.pop(child_id, None)
        if orphaned:
            logger.debug(f"Orphaned history ids: {orphaned}")
        return orphaned

    def get_history_summary(self) -> Dict[str, int]:
        return {
            "total_parents": len(self._back),
            "total_back_entries": sum(len(s) for s in self._back.values()),
            "total_forward_entries": sum(len(s) for s in self._forward.values()),
            "total_component_states": len(self._component_state),
        }
