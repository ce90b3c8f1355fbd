"""
Pluggable async persistence for history and state records.

Adapters store opaque strings by key. FlowStorage layers JSON encoding on top
and never lets an adapter failure escape: errors are logged and reads fall
back to an empty scope.
"""

import asyncio
import json
import re
import time
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union, runtime_checkable

from loguru import logger

from ..Utils.atomic_file_ops import atomic_write_text, read_text_if_exists, remove_if_exists

logger = logger.bind(module="flowkit.storage")

CORRUPT_PREFIX = "flowstate:corrupt"


@runtime_checkable
class StorageAdapter(Protocol):
    async def get_item(self, key: str) -> Optional[str]: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...


class MemoryStorageAdapter:
    """Process-local adapter. Default when no persistent backend is configured."""

    def __init__(self):
        self.items: Dict[str, str] = {}

    async def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    async def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class FileStorageAdapter:
    """One file per key under `directory`, written atomically off the event loop."""

    _UNSAFE = re.compile(r"[^A-Za-z0-9._-]")

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory).expanduser()

    def path_for(self, key: str) -> Path:
        return self.directory / f"{self._UNSAFE.sub('_', key)}.json"

    async def get_item(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(read_text_if_exists, self.path_for(key))

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(atomic_write_text, self.path_for(key), value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(remove_if_exists, self.path_for(key))


class FlowStorage:
    """JSON record storage over a StorageAdapter."""

    def __init__(self, adapter: Optional[StorageAdapter] = None):
        self.adapter = adapter if adapter is not None else MemoryStorageAdapter()

    async def load(self, key: str) -> Optional[Any]:
        """Decode the record at `key`. Corrupt records are quarantined and read as None."""
        try:
            raw = await self.adapter.get_item(key)
        except Exception as e:
            logger.warning(f"Storage read failed for '{key}': {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            await self._quarantine(key, raw, e)
            return None

    async def save(self, key: str, data: Any) -> bool:
        try:
            payload = json.dumps(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Record '{key}' is not JSON serializable, not persisted: {e}")
            return False
        try:
            await self.adapter.set_item(key, payload)
            return True
        except Exception as e:
            logger.warning(f"Storage write failed for '{key}': {e}")
            return False

    async def remove(self, key: str) -> bool:
        try:
            await self.adapter.remove_item(key)
            return True
        except Exception as e:
            logger.warning(f"Storage remove failed for '{key}': {e}")
            return False

    async def _quarantine(self, key: str, raw: str, error: Exception) -> None:
        backup_key = f"{CORRUPT_PREFIX}:{key}:{int(time.time() * 1000)}"
        logger.error(f"Corrupt record at '{key}' ({error}); moved to '{backup_key}'")
        try:
            await self.adapter.set_item(backup_key, raw)
            await self.adapter.remove_item(key)
        except Exception as e:
            logger.warning(f"Could not quarantine corrupt record '{key}': {e}")


class WriteBehind:
    """
    Coalescing background writer.

    `mark_dirty(key)` schedules one writer task per key; the task saves the
    snapshot returned by `snapshot_fn(key)` at write time and loops while the
    key keeps getting dirtied, so writes to one key never overlap or reorder.
    Outside a running event loop the write is skipped with a debug log.
    """

    def __init__(self, storage: FlowStorage, snapshot_fn, name: str = "store"):
        self.storage = storage
        self.snapshot_fn = snapshot_fn
        self.name = name
        self._dirty: set = set()
        self._writers: Dict[str, asyncio.Task] = {}
        self._pending_tasks: set = set()

    def mark_dirty(self, key: str) -> None:
        self._dirty.add(key)
        if key in self._writers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"{self.name}: no running loop, '{key}' not persisted")
            self._dirty.discard(key)
            return
        task = loop.create_task(self._write_loop(key))
        self._writers[key] = task
        self.track(task)

    def track(self, task: asyncio.Task) -> None:
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _write_loop(self, key: str) -> None:
        try:
            while key in self._dirty:
                self._dirty.discard(key)
                snapshot = self.snapshot_fn(key)
                if snapshot is None:
                    await self.storage.remove(key)
                else:
                    await self.storage.save(key, snapshot)
        finally:
            self._writers.pop(key, None)

    async def flush(self, timeout: float = 10.0) -> bool:
        """Wait for every pending write. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        while self._pending_tasks:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"{self.name}: timeout with {len(self._pending_tasks)} pending write(s)")
                return False
            await asyncio.wait(list(self._pending_tasks), timeout=remaining)
        return True

    @property
    def pending(self) -> int:
        return len(self._pending_tasks)


def create_storage(backend: str = "memory", path: Optional[str] = None) -> FlowStorage:
    """Build FlowStorage for a configured backend name."""
    if backend == "file":
        if not path:
            raise ValueError("File storage backend requires a path")
        return FlowStorage(FileStorageAdapter(path))
    if backend != "memory":
        logger.warning(f"Unknown storage backend '{backend}', using memory")
    return FlowStorage(MemoryStorageAdapter())
