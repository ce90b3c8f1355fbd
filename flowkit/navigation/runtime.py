"""
Navigation runtime.

Drives transitions between children of a parent: open, close, next, prev,
forward, go_to and root switching. Each parent carries its own stack, active
child, flags and a lock; a second verb on a locked parent returns False
instead of queuing.

A transition runs its checks and hooks first and commits only once all of
them pass:

    restriction checks -> on_switching(current) -> on_open(target) -> commit

Commit means: history push, stack push, active-child update, event.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from ..config import FlowSettings
from .history import NavigationHistory
from .lifecycle import HookOutcome, run_hook
from .registry import NodeRegistry
from .restrictions import check_restriction, is_restricted_in
from .types import (
    AtEndContext,
    FlowEvent,
    FlowFlags,
    FlowNode,
    HistoryEntry,
    NavigationOptions,
    NodeKind,
    OpenContext,
    RegistryEvent,
    Restriction,
)

logger = logger.bind(module="flowkit.runtime")

FlowListener = Callable[[FlowEvent], None]
AlertHandler = Callable[[Restriction], Any]


def default_alert_handler(restriction: Restriction) -> None:
    logger.warning(f"{restriction.title}: {restriction.message}")


@dataclass
class ParentRuntime:
    """Transient navigation state of one parent. Never persisted."""
    stack: List[str] = field(default_factory=list)
    active: Optional[str] = None
    flags: FlowFlags = field(default_factory=FlowFlags)
    locked: bool = False


class AtEndAction(Enum):
    HANDLED = "handled"
    DECLINED = "declined"
    BUBBLE = "bubble"
    REDIRECT = "redirect"


class NavigationRuntime:
    """State machine over the registry, with history and state as collaborators."""

    def __init__(self, registry: NodeRegistry, history: NavigationHistory, state=None,
                 settings: Optional[FlowSettings] = None,
                 alert_handler: Optional[AlertHandler] = None):
        self.registry = registry
        self.history = history
        self.state = state
        self.settings = settings or FlowSettings()
        self.alert_handler = alert_handler or default_alert_handler
        self._parents: Dict[str, ParentRuntime] = {}
        self._active_root: Optional[str] = None
        self._listeners: List[Tuple[Optional[str], FlowListener]] = []
        self._pending_tasks: set = set()
        self._unsubscribe_registry = registry.subscribe(self._on_registry_event)

    # ------------------------------------------------------------------
    # Per-parent bookkeeping
    # ------------------------------------------------------------------

    def _runtime(self, parent_id: str) -> ParentRuntime:
        rt = self._parents.get(parent_id)
        if rt is None:
            rt = ParentRuntime()
            self._parents[parent_id] = rt
        return rt

    def _acquire(self, parent_id: str) -> Optional[ParentRuntime]:
        rt = self._runtime(parent_id)
        if rt.locked:
            logger.debug(f"'{parent_id}' is mid-transition, rejecting")
            return None
        rt.locked = True
        return rt

    def _timeout(self, opts: NavigationOptions, node: Optional[FlowNode] = None) -> float:
        if opts.timeout is not None:
            return opts.timeout
        if node is not None and node.props.lifecycle_timeout is not None:
            return node.props.lifecycle_timeout
        return self.settings.lifecycle_timeout

    def _set_active(self, parent_id: str, rt: ParentRuntime, child_id: Optional[str]) -> None:
        rt.active = child_id
        self.registry.set_current_child(parent_id, child_id)

    def _resolve_child(self, parent_id: str, name: str) -> Optional[FlowNode]:
        return (self.registry.get_child_by_name(parent_id, name)
                or self.registry.get_node(f"{parent_id}.{name}")
                or self.registry.get_node(name))

    def _infer_parent(self, parent_id: Optional[str]) -> Optional[str]:
        if parent_id:
            return parent_id
        return self.registry.find_top_parent_with_active_child()

    def _on_registry_event(self, event: RegistryEvent) -> None:
        if event.type not in ("unregister", "restore"):
            return
        if event.type == "unregister":
            removed = set(event.node_ids)
        else:
            removed = {nid for nid in self._parents if not self.registry.has_node(nid)}
            for rt in self._parents.values():
                removed.update(cid for cid in rt.stack if not self.registry.has_node(cid))

        for parent_id in [pid for pid in self._parents if pid in removed]:
            del self._parents[parent_id]
        for parent_id, rt in self._parents.items():
            if not any(cid in removed for cid in rt.stack) and rt.active not in removed:
                continue
            rt.stack = [cid for cid in rt.stack if cid not in removed]
            self._set_active(parent_id, rt, rt.stack[-1] if rt.stack else None)
        self._listeners = [(pid, cb) for pid, cb in self._listeners if pid not in removed]
        if self._active_root in removed:
            self._active_root = None

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, callback: FlowListener) -> Callable[[], None]:
        """Receive every runtime event."""
        return self._add_listener(None, callback)

    def on_change(self, parent_id: str, callback: FlowListener) -> Callable[[], None]:
        """Receive events for one parent only."""
        return self._add_listener(parent_id, callback)

    def _add_listener(self, parent_id: Optional[str], callback: FlowListener) -> Callable[[], None]:
        entry = (parent_id, callback)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _emit(self, event_type: str, parent_id: Optional[str] = None, **payload: Any) -> None:
        event = FlowEvent(event_type, parent_id, payload)
        for target, listener in list(self._listeners):
            if target is not None and target != parent_id:
                continue
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Runtime listener failed on '{event_type}': {e}")

    def _deny(self, parent_id: str, node_id: str, restriction: Restriction, entering: bool) -> bool:
        logger.info(f"Blocked {'entering' if entering else 'leaving'} '{node_id}': {restriction.message}")
        try:
            result = self.alert_handler(restriction)
            if inspect.isawaitable(result):
                self._track(asyncio.ensure_future(result))
        except Exception as e:
            logger.error(f"Alert handler failed: {e}")
        self._emit("restricted", parent_id, node_id=node_id, entering=entering,
                   title=restriction.title, message=restriction.message)
        return False

    def _track(self, task: asyncio.Future) -> None:
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def wait_for_pending(self) -> None:
        """Await background work such as post-switch cleanup."""
        while self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Core transition
    # ------------------------------------------------------------------

    async def _enter(self, rt: ParentRuntime, parent: FlowNode, target: FlowNode, *,
                     opener: Optional[str], opts: NavigationOptions, source: str, event: str,
                     record: str = "push", reset_stack: bool = False) -> bool:
        """Checks, hooks, then commit. Caller holds the parent's lock."""
        current = self.registry.get_node(rt.active)
        if current is not None and current.id == target.id and not reset_stack:
            return True

        restriction = check_restriction(self.registry, target.id, entering=True)
        if restriction is not None:
            return self._deny(parent.id, target.id, restriction, entering=True)
        if current is not None and current.id != target.id:
            restriction = check_restriction(self.registry, current.id, entering=False)
            if restriction is not None:
                return self._deny(parent.id, current.id, restriction, entering=False)

        if current is not None and current.id != target.id:
            rt.flags.switching = True
            self._emit("switching:start", parent.id, from_id=current.id, to_id=target.id)
            try:
                result = await run_hook(current.props.on_switching, "forward",
                                        timeout=self._timeout(opts, current),
                                        name=f"{current.id}.on_switching")
            finally:
                rt.flags.switching = False
            if not result.proceed:
                self._emit("aborted", parent.id, stage="on_switching", outcome=result.outcome.value)
                return False

        rt.flags.opening = True
        self._emit("opening:start", parent.id, to_id=target.id,
                   from_id=current.id if current is not None else None)
        try:
            ctx = OpenContext(parent_id=parent.id, source=source, opener=opener, params=opts.params)
            result = await run_hook(target.props.on_open, ctx, timeout=self._timeout(opts, target),
                                    name=f"{target.id}.on_open")
        finally:
            rt.flags.opening = False
        if not result.proceed:
            self._emit("aborted", parent.id, stage="on_open", outcome=result.outcome.value)
            return False

        # commit
        if reset_stack:
            rt.stack = []
        if record == "push":
            if opts.replace and rt.stack:
                rt.stack.pop()
                self.history.pop(parent.id)
            self.history.push(parent.id, HistoryEntry(target.id, target.name, params=opts.params))
        elif record == "forward":
            self.history.pop_forward(parent.id)
        if not rt.stack or rt.stack[-1] != target.id:
            rt.stack.append(target.id)
        if len(rt.stack) > self.settings.max_history:
            rt.stack = rt.stack[-self.settings.max_history:]
        self._set_active(parent.id, rt, target.id)

        logger.info(f"{event}: '{parent.id}' -> '{target.id}'")
        self._emit(event, parent.id, to_id=target.id,
                   from_id=current.id if current is not None else None, stack=list(rt.stack))
        return True

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    async def open(self, parent_id: str, child_name: str, opener: Optional[str] = None,
                   opts: Optional[NavigationOptions] = None, _depth: int = 0,
                   show_initial: bool = True) -> bool:
        """
        Make `child_name` the active child of `parent_id`.

        `child_name` may be a sibling name, the tail of `<parent_id>.<name>`, or
        a raw node id. A raw id owned by another parent redirects the open to
        that parent, then switches root when it lives in another pack.

        Opening a container that has no active child also opens its initial
        child unless `show_initial` is False.
        """
        opts = opts or NavigationOptions()
        parent = self.registry.get_node(parent_id)
        if parent is None:
            logger.warning(f"open: unknown parent '{parent_id}'")
            return False
        child = self._resolve_child(parent_id, child_name)
        if child is None or child.parent_id is None:
            logger.warning(f"open: '{child_name}' is not a child reachable from '{parent_id}'")
            return False

        if child.parent_id != parent_id:
            if _depth >= self.settings.max_redirect_depth:
                logger.warning(f"open: redirect limit reached resolving '{child_name}'")
                return False
            logger.debug(f"open: '{child.id}' belongs to '{child.parent_id}', redirecting")
            opened = await self.open(child.parent_id, child.name, opener, opts, _depth + 1, show_initial)
            # the root only moves once the redirected open has committed
            pack = self.registry.get_mom(child.parent_id)
            if opened and pack is not None and pack != self._active_root:
                await self.switch_root(pack)
            return opened

        rt = self._acquire(parent_id)
        if rt is None:
            return False
        try:
            await self.history.ensure_loaded(parent_id)
            opened = await self._enter(rt, parent, child, opener=opener, opts=opts,
                                       source="parent", event="open")
        finally:
            rt.locked = False

        if opened and show_initial:
            await self._show_initial(child, opts)
        return opened

    async def _show_initial(self, node: FlowNode, opts: NavigationOptions) -> None:
        # a container entered with nothing active shows its initial child
        if (node.kind.is_container and self.registry.get_children(node.id)
                and self._runtime(node.id).active is None):
            await self.activate_initial(node.id, opts=NavigationOptions(timeout=opts.timeout))

    async def close(self, parent_id: str) -> bool:
        """Run on_close for every stacked child (top first), then empty the parent."""
        parent = self.registry.get_node(parent_id)
        if parent is None:
            return False
        rt = self._acquire(parent_id)
        if rt is None:
            return False
        try:
            if rt.active is not None:
                restriction = check_restriction(self.registry, rt.active, entering=False)
                if restriction is not None:
                    return self._deny(parent_id, rt.active, restriction, entering=False)

            seen = set()
            for child_id in reversed(rt.stack):
                if child_id in seen:
                    continue
                seen.add(child_id)
                node = self.registry.get_node(child_id)
                if node is None:
                    continue
                # failures are logged by run_hook and never stop the close
                await run_hook(node.props.on_close, timeout=self._timeout(NavigationOptions(), node),
                               name=f"{child_id}.on_close")

            rt.stack = []
            self._set_active(parent_id, rt, None)
            logger.info(f"close: '{parent_id}'")
            self._emit("close", parent_id)
            return True
        finally:
            rt.locked = False

    async def next(self, parent_id: Optional[str] = None, opts: Optional[NavigationOptions] = None,
                   _depth: int = 0) -> bool:
        """
        Advance to the next sibling that is not restricted.

        Past the last sibling the parent's at_end policy decides. Its result is
        final; only when the policy declines (or none is declared) does the
        runtime wrap around to the first unrestricted sibling.
        """
        opts = opts or NavigationOptions()
        parent_id = self._infer_parent(parent_id)
        parent = self.registry.get_node(parent_id)
        if parent is None:
            return False
        children = self.registry.get_children(parent_id)
        if not children:
            if parent.parent_id is not None and _depth < self.settings.max_redirect_depth:
                return await self.next(parent.parent_id, opts, _depth + 1)
            return False

        rt = self._acquire(parent_id)
        if rt is None:
            return False
        follow_up: Optional[Tuple[AtEndAction, Optional[str]]] = None
        entered: Optional[FlowNode] = None
        try:
            await self.history.ensure_loaded(parent_id)
            ids = [c.id for c in children]
            if rt.active not in ids:
                first = next((c for c in children if not is_restricted_in(c)), None)
                if first is not None and await self._enter(rt, parent, first, opener=None, opts=opts,
                                                           source="parent", event="open"):
                    entered = first
            else:
                index = ids.index(rt.active)
                candidate = next((c for c in children[index + 1:] if not is_restricted_in(c)), None)
                if candidate is None:
                    action, target = await self._handle_at_end(rt, parent, opts)
                    if action is AtEndAction.HANDLED:
                        return True
                    if action in (AtEndAction.BUBBLE, AtEndAction.REDIRECT):
                        follow_up = (action, target)
                    else:
                        candidate = next((c for c in children[:index] if not is_restricted_in(c)), None)
                if candidate is not None and await self._enter(rt, parent, candidate, opener=rt.active,
                                                               opts=opts, source="sibling", event="next"):
                    entered = candidate
        finally:
            rt.locked = False

        if follow_up is None:
            if entered is None:
                return False
            await self._show_initial(entered, opts)
            return True

        action, target = follow_up
        policy = getattr(parent.props, "at_end", None)
        if action is AtEndAction.BUBBLE:
            moved = await self.next(parent.parent_id, opts, _depth + 1)
            if policy is not None and policy.clean_up:
                await self._cleanup_and_unregister(parent.id, unregister=True,
                                                   reset_state=policy.reset_state)
            return moved
        node = self.registry.get_node(target)
        return await self.open(node.parent_id, node.name, opts=opts)

    async def _handle_at_end(self, rt: ParentRuntime, parent: FlowNode,
                             opts: NavigationOptions) -> Tuple[AtEndAction, Optional[str]]:
        policy = getattr(parent.props, "at_end", None)
        if policy is None:
            return AtEndAction.DECLINED, None
        if check_restriction(self.registry, parent.id, entering=False) is not None:
            self._emit("at_end:blocked", parent.id)
            return AtEndAction.DECLINED, None

        timeout = self._timeout(opts, parent)
        if callable(policy.end_with):
            ctx = AtEndContext(parent=parent, runtime=self, registry=self.registry, lifecycle_timeout=timeout)
            result = await run_hook(policy.end_with, ctx, timeout=timeout, name=f"{parent.id}.at_end")
            if result.outcome is not HookOutcome.RESOLVED or result.value is False:
                return AtEndAction.DECLINED, None
            value = result.value if isinstance(result.value, dict) else {}
            self._emit("at_end:custom", parent.id, result=value)
            if value.get("dismount"):
                # deferred so the lock release in next() does not touch a removed parent
                self._track(asyncio.ensure_future(self._cleanup_and_unregister(
                    parent.id,
                    unregister=bool(value.get("clean_up", policy.clean_up)),
                    reset_state=bool(value.get("reset_state", policy.reset_state)),
                )))
            return (AtEndAction.HANDLED if value.get("handled", True) else AtEndAction.DECLINED), None

        mode = policy.end_with
        if mode == "parent":
            if parent.parent_id is None:
                self._emit("at_end:no_parent", parent.id)
                return AtEndAction.HANDLED, None
            self._emit("at_end:parent", parent.id, to_parent=parent.parent_id)
            return AtEndAction.BUBBLE, None

        if mode == "self":
            first = next((c for c in self.registry.get_children(parent.id) if not is_restricted_in(c)), None)
            if first is None:
                return AtEndAction.DECLINED, None
            ok = await self._enter(rt, parent, first, opener=rt.active, opts=opts,
                                   source="at_end", event="at_end:self", reset_stack=True)
            return (AtEndAction.HANDLED if ok else AtEndAction.DECLINED), None

        if mode == "element":
            target = self._resolve_child(parent.id, policy.element) if policy.element else None
            if target is None or target.parent_id is None:
                self._emit("at_end:element_missing", parent.id, element=policy.element)
                return AtEndAction.DECLINED, None
            if target.parent_id != parent.id:
                return AtEndAction.REDIRECT, target.id
            ok = await self._enter(rt, parent, target, opener=rt.active, opts=opts,
                                   source="at_end", event="at_end:element")
            return (AtEndAction.HANDLED if ok else AtEndAction.DECLINED), None

        self._emit("at_end:unknown", parent.id, end_with=str(mode))
        return AtEndAction.DECLINED, None

    async def _cleanup_and_unregister(self, parent_id: str, unregister: bool, reset_state: bool) -> None:
        self._parents.pop(parent_id, None)
        if reset_state and self.state is not None:
            await self.state.clear(parent_id, "parent")
        if unregister:
            self.registry.unregister_node(parent_id)
        self._emit("at_end:cleanup", parent_id, unregistered=unregister, reset_state=reset_state)

    async def prev(self, parent_id: Optional[str] = None, opts: Optional[NavigationOptions] = None,
                   _depth: int = 0) -> bool:
        """
        Go back one step within `parent_id`.

        With nothing left to go back to, the call bubbles to the parent's own
        parent. At the root it returns False so the host can handle the back
        action itself.
        """
        opts = opts or NavigationOptions()
        parent_id = self._infer_parent(parent_id)
        parent = self.registry.get_node(parent_id)
        if parent is None:
            return False
        rt = self._acquire(parent_id)
        if rt is None:
            return False
        try:
            await self.history.ensure_loaded(parent_id)
            bubble = len(rt.stack) <= 1
            if not bubble:
                current = self.registry.get_node(rt.active)
                previous = self.registry.get_node(rt.stack[-2])

                restriction = check_restriction(self.registry, current.id, entering=False)
                if restriction is not None:
                    return self._deny(parent_id, current.id, restriction, entering=False)
                restriction = check_restriction(self.registry, previous.id, entering=True)
                if restriction is not None:
                    return self._deny(parent_id, previous.id, restriction, entering=True)

                rt.flags.switching = True
                self._emit("switching:start", parent_id, from_id=current.id, to_id=previous.id)
                try:
                    result = await run_hook(current.props.on_switching, "backward",
                                            timeout=self._timeout(opts, current),
                                            name=f"{current.id}.on_switching")
                finally:
                    rt.flags.switching = False
                if not result.proceed:
                    self._emit("aborted", parent_id, stage="on_switching", outcome=result.outcome.value)
                    return False

                entry = self.history.pop(parent_id)
                rt.stack.pop()
                self._set_active(parent_id, rt, previous.id)
                logger.info(f"prev: '{parent_id}' -> '{previous.id}'")
                self._emit("prev", parent_id, to_id=previous.id, from_id=current.id,
                           entry=entry, restored_state=self.history.restore_component_state(previous.id),
                           stack=list(rt.stack))
                return True
        finally:
            rt.locked = False

        if parent.parent_id is not None and _depth < self.settings.max_redirect_depth:
            return await self.prev(parent.parent_id, opts, _depth + 1)
        logger.debug(f"prev: nothing to go back to at root '{parent_id}'")
        return False

    async def forward(self, parent_id: str, opts: Optional[NavigationOptions] = None) -> bool:
        """Redo the most recent `prev` in `parent_id`."""
        opts = opts or NavigationOptions()
        parent = self.registry.get_node(parent_id)
        entry = self.history.peek_forward(parent_id)
        if parent is None or entry is None:
            return False
        target = self.registry.get_node(entry.child_id)
        if target is None or target.parent_id != parent_id:
            return False
        rt = self._acquire(parent_id)
        if rt is None:
            return False
        try:
            return await self._enter(rt, parent, target, opener=rt.active, opts=opts,
                                     source="forward", event="forward", record="forward")
        finally:
            rt.locked = False

    async def go_to(self, parent_id: str, *path_segments: str,
                    opts: Optional[NavigationOptions] = None) -> bool:
        """
        Deep link to `<parent_id>.<segments>` (or the absolute id `<segments>`).

        Every container between the parent and the target is activated on the
        way down. Restrictions along the whole path are checked before any
        transition runs.
        """
        opts = opts or NavigationOptions()
        if not path_segments or self.registry.get_node(parent_id) is None:
            return False
        dotted = ".".join(path_segments)
        target = self.registry.get_node(f"{parent_id}.{dotted}") or self.registry.get_node(dotted)
        if target is None or target.parent_id is None:
            logger.warning(f"go_to: nothing at '{dotted}' from '{parent_id}'")
            return False

        hops: List[Tuple[str, FlowNode]] = []
        node = target
        while node is not None and node.parent_id is not None:
            hops.append((node.parent_id, node))
            if node.parent_id == parent_id:
                break
            node = self.registry.get_node(node.parent_id)
        hops.reverse()

        for hop_parent, hop_child in hops:
            restriction = check_restriction(self.registry, hop_child.id, entering=True)
            if restriction is not None:
                return self._deny(hop_parent, hop_child.id, restriction, entering=True)
            active = self._runtime(hop_parent).active
            if active is not None and active != hop_child.id:
                restriction = check_restriction(self.registry, active, entering=False)
                if restriction is not None:
                    return self._deny(hop_parent, active, restriction, entering=False)

        for i, (hop_parent, hop_child) in enumerate(hops):
            is_target = i == len(hops) - 1
            if not await self.open(hop_parent, hop_child.name, opts=opts, show_initial=is_target):
                return False
        pack = self.registry.get_mom(target.id)
        if pack is not None and pack != self._active_root:
            await self.switch_root(pack)
        self._emit("go_to", parent_id, to_id=target.id)
        return True

    async def activate_initial(self, parent_id: str, opts: Optional[NavigationOptions] = None) -> bool:
        """Open the parent's declared `initial` child, else its first child."""
        parent = self.registry.get_node(parent_id)
        if parent is None:
            return False
        children = self.registry.get_children(parent_id)
        if not children:
            return False
        initial = getattr(parent.props, "initial", None)
        name = initial if initial and self._resolve_child(parent_id, initial) else children[0].name
        return await self.open(parent_id, name, opts=opts)

    async def switch_root(self, root_id: str) -> bool:
        """
        Point the active root at the pack containing `root_id`.

        After the configured grace delay, ids no longer referenced by any
        history stack lose their temporary and scoped state.
        """
        target = self.registry.get_mom(root_id) or root_id
        if target == self._active_root:
            return False
        previous = self._active_root
        self._active_root = target
        logger.info(f"switch_root: '{previous}' -> '{target}'")
        self._emit("root:switch", None, root_id=target, previous=previous)
        self._track(asyncio.ensure_future(self._cleanup_after_switch(self.settings.root_switch_grace)))
        return True

    async def _cleanup_after_switch(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            candidates = self.state.ephemeral_ids() if self.state is not None else ()
            orphaned = self.history.cleanup_orphaned_states(candidates)
            if orphaned and self.state is not None:
                self.state.cleanup_temp_state(orphaned)
            if orphaned:
                self._emit("root:cleanup", None, orphaned=orphaned)
        except Exception as e:
            logger.error(f"Post-switch cleanup failed: {e}")

    # ------------------------------------------------------------------
    # Tabs and drawers
    # ------------------------------------------------------------------

    async def open_tab(self, tab_parent_id: str, tab_name: str,
                       opts: Optional[NavigationOptions] = None) -> bool:
        """Switch tabs and make sure the tab bar is showing."""
        node = self.registry.get_node(tab_parent_id)
        if node is None:
            return False
        if node.kind is not NodeKind.TAB:
            logger.warning(f"open_tab: '{tab_parent_id}' is a {node.kind.value}, not a tab parent")
        opened = await self.open(tab_parent_id, tab_name, opts=opts)
        if opened:
            self.registry.set_tab_visible(tab_parent_id, True)
        return opened

    async def close_tab(self, tab_parent_id: str) -> bool:
        """Close the tab parent and hide its tab bar."""
        closed = await self.close(tab_parent_id)
        if closed:
            self.registry.set_tab_visible(tab_parent_id, False)
        return closed

    async def open_drawer(self, drawer_id: str, child_name: Optional[str] = None,
                          opts: Optional[NavigationOptions] = None) -> bool:
        """Show the drawer, opening `child_name` (or its initial child if none is active)."""
        node = self.registry.get_node(drawer_id)
        if node is None:
            return False
        if child_name is not None:
            if not await self.open(drawer_id, child_name, opts=opts):
                return False
        elif self._runtime(drawer_id).active is None and self.registry.get_children(drawer_id):
            if not await self.activate_initial(drawer_id, opts):
                return False
        self.registry.set_drawer_visible(drawer_id, True)
        self._emit("drawer:open", drawer_id)
        return True

    async def close_drawer(self, drawer_id: str) -> bool:
        node = self.registry.get_node(drawer_id)
        if node is None:
            return False
        active = self._runtime(drawer_id).active
        if active is not None:
            restriction = check_restriction(self.registry, active, entering=False)
            if restriction is not None:
                return self._deny(drawer_id, active, restriction, entering=False)
        self.registry.set_drawer_visible(drawer_id, False)
        self._emit("drawer:close", drawer_id)
        return True

    # ------------------------------------------------------------------
    # Read contract for the rendering layer
    # ------------------------------------------------------------------

    def get_active(self, parent_id: str) -> Optional[FlowNode]:
        rt = self._parents.get(parent_id)
        return self.registry.get_node(rt.active) if rt is not None else None

    def get_flags(self, parent_id: str) -> FlowFlags:
        rt = self._parents.get(parent_id)
        if rt is None:
            return FlowFlags()
        flags = rt.flags
        return FlowFlags(flags.opening, flags.switching, flags.dragging, flags.animating)

    def get_stack(self, parent_id: str) -> List[str]:
        rt = self._parents.get(parent_id)
        return list(rt.stack) if rt is not None else []

    def is_locked(self, parent_id: str) -> bool:
        rt = self._parents.get(parent_id)
        return rt is not None and rt.locked

    def get_active_root(self) -> Optional[str]:
        return self._active_root

    def get_mom(self, node_id: str) -> Optional[str]:
        return self.registry.get_mom(node_id)

    # ------------------------------------------------------------------
    # Gesture / animation signals
    # ------------------------------------------------------------------

    async def on_drag_update(self, parent_id: str, position: float) -> None:
        rt = self._runtime(parent_id)
        rt.flags.dragging = True
        node = self.registry.get_node(rt.active)
        if node is not None:
            await run_hook(node.props.on_drag, position, timeout=self._timeout(NavigationOptions(), node),
                           name=f"{node.id}.on_drag")
        self._emit("drag", parent_id, position=position)

    def on_drag_end(self, parent_id: str) -> None:
        self._runtime(parent_id).flags.dragging = False
        self._emit("drag:end", parent_id)

    def notify_animation_complete(self, parent_id: str, is_animating: bool = False) -> None:
        self._runtime(parent_id).flags.animating = is_animating
        self._emit("animating", parent_id, is_animating=is_animating)

    def dispose(self) -> None:
        """Detach from the registry and drop pending background work."""
        self._unsubscribe_registry()
        for task in list(self._pending_tasks):
            task.cancel()
