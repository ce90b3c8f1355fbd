# flowkit/state/state_store.py
# Description: Keyed state partitioned by parent/child namespace
#
"""
Scoped State Store
------------------

Values live in namespaces named `parent::<id>` or `child::<id>` (plus the
process-wide `global` namespace for shared values). Each namespace holds:
- plain keys, optionally addressed by dot path ("cart.items")
- internal buckets: __categories, __secure, __temp, __scoped, __shared
- per-key metadata and optional permission records

Namespaces load lazily from storage on first touch and are written back after
every mutation. The __temp bucket is never persisted.

Reads never raise: the outcome is a StateResult whose status is ok,
undefined or denied.
"""

import asyncio
import copy
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from loguru import logger

from ..config import FlowSettings
from ..logging_config import preview_value
from ..Utils.value_encryption import ValueEncryption
from .permissions import PermissionMode, PermissionRecord
from .storage import FlowStorage, WriteBehind

logger = logger.bind(module="flowkit.state")

PARENT_PREFIX = "parent::"
CHILD_PREFIX = "child::"
GLOBAL_NAMESPACE = "global"
STORAGE_PREFIX = "flow:"

CATEGORIES = "__categories"
SECURE = "__secure"
TEMP = "__temp"
SCOPED = "__scoped"
SHARED = "__shared"
PERMISSIONS = "__permissions"
INTERNAL_KEYS = (CATEGORIES, SECURE, TEMP, SCOPED, SHARED, PERMISSIONS)

BATCH_PREFIX = "_batch"

_MISSING = object()


class StateStatus(str, Enum):
    OK = "ok"
    UNDEFINED = "undefined"
    DENIED = "denied"


@dataclass
class StateKeyMeta:
    key: str
    namespace: str
    created_at: float
    updated_at: float
    size_bytes: int
    permission: Optional[PermissionRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "namespace": self.namespace,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "sizeBytes": self.size_bytes,
            "permission": self.permission.to_dict() if self.permission else None,
        }


@dataclass
class StateEvent:
    type: str
    namespace: str
    key: Optional[str] = None
    value: Any = None


@dataclass
class StateSuggestion:
    key: str
    namespace: str
    status: StateStatus


# --- dot-path helpers ---

def _split(key: str) -> List[str]:
    return str(key).split(".") if key else []


def _get_at(obj: Any, parts: List[str]) -> Any:
    current = obj
    for part in parts:
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def _set_at(obj: Dict[str, Any], parts: List[str], value: Any) -> None:
    current = obj
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def _delete_at(obj: Any, parts: List[str]) -> bool:
    parent = _get_at(obj, parts[:-1])
    if isinstance(parent, dict) and parts[-1] in parent:
        del parent[parts[-1]]
        return True
    return False


def _size_of(value: Any) -> int:
    try:
        return len(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return 0


class _Namespace:
    """In-memory contents of one namespace."""

    def __init__(self, name: str):
        self.name = name
        self.values: Dict[str, Any] = {}
        self.categories: Dict[str, Dict[str, Any]] = {}
        self.secure: Dict[str, str] = {}
        self.temp: Dict[str, Any] = {}
        self.scoped: Dict[str, str] = {}
        self.shared: Dict[str, Any] = {}
        self.meta: Dict[str, StateKeyMeta] = {}
        self.permissions: Dict[str, PermissionRecord] = {}
        # plain keys written with persist=False
        self.volatile: Set[str] = set()

    def bucket(self, name: str) -> Dict[str, Any]:
        return {"values": self.values, "temp": self.temp, "shared": self.shared}[name]

    def is_empty(self) -> bool:
        persistent_values = [k for k in self.values if k not in self.volatile]
        return not (persistent_values or self.categories or self.secure or self.shared or self.permissions)

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {k: v for k, v in self.values.items() if k not in self.volatile}
        record[CATEGORIES] = self.categories
        record[SECURE] = self.secure
        record[TEMP] = {}
        record[SCOPED] = {k: t for k, t in self.scoped.items() if k not in self.volatile}
        record[SHARED] = self.shared
        record[PERMISSIONS] = {
            k: p.to_dict() for k, p in self.permissions.items()
            if _split(k)[0] not in self.volatile and not p.is_expired()
        }
        return record

    def merge_record(self, record: Mapping[str, Any]) -> None:
        """Layer a stored record under whatever was written before the load finished."""
        now = time.time()
        for key, value in record.items():
            if key in INTERNAL_KEYS:
                continue
            if key not in self.values:
                self.values[key] = value
                self.meta[key] = StateKeyMeta(key, self.name, now, now, _size_of(value))
        for name, loaded in ((CATEGORIES, self.categories), (SECURE, self.secure),
                             (SCOPED, self.scoped), (SHARED, self.shared)):
            stored = record.get(name)
            if isinstance(stored, dict):
                for key, value in stored.items():
                    loaded.setdefault(key, value)
        for key, raw in (record.get(PERMISSIONS) or {}).items():
            if key in self.permissions:
                continue
            try:
                self.permissions[key] = PermissionRecord.from_dict(raw)
            except (TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed permission for '{self.name}::{key}': {e}")
        for key, meta in self.meta.items():
            meta.permission = self.permissions.get(key)


@dataclass
class StateResult:
    """
    Outcome of a read, with helpers that write the changed value back.

    Helpers are coroutines because every write may schedule persistence:

        result = await store.get("cart.items", parent_id="home")
        await result.push({"sku": 1})
    """
    value: Any = None
    status: StateStatus = StateStatus.UNDEFINED
    meta: Optional[StateKeyMeta] = None
    key: Optional[str] = None
    namespace: Optional[str] = None
    bucket: str = "values"
    store: Optional["ScopedStateStore"] = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.status is StateStatus.OK

    @property
    def denied(self) -> bool:
        return self.status is StateStatus.DENIED

    def _writable(self) -> bool:
        if self.store is None or self.namespace is None or self.key is None:
            return False
        if self.status is StateStatus.DENIED:
            logger.warning(f"Refusing write through denied result for '{self.key}'")
            return False
        return True

    async def _commit(self) -> None:
        await self.store._write(self.namespace, self.key, self.value, bucket=self.bucket)
        self.status = StateStatus.OK

    async def save(self, value: Any) -> "StateResult":
        if self._writable():
            self.value = value
            await self._commit()
        return self

    async def push(self, item: Any) -> "StateResult":
        if self._writable():
            if not isinstance(self.value, list):
                self.value = []
            self.value.append(item)
            await self._commit()
        return self

    async def pop(self) -> Any:
        if not self._writable() or not isinstance(self.value, list) or not self.value:
            return None
        item = self.value.pop()
        await self._commit()
        return item

    async def unshift(self, item: Any) -> "StateResult":
        if self._writable():
            if not isinstance(self.value, list):
                self.value = []
            self.value.insert(0, item)
            await self._commit()
        return self

    async def shift(self) -> Any:
        if not self._writable() or not isinstance(self.value, list) or not self.value:
            return None
        item = self.value.pop(0)
        await self._commit()
        return item

    async def assign(self, values: Mapping[str, Any]) -> "StateResult":
        if self._writable():
            if not isinstance(self.value, dict):
                self.value = {}
            self.value.update(values)
            await self._commit()
        return self

    async def set_path(self, path: str, value: Any) -> "StateResult":
        if self._writable():
            if not isinstance(self.value, dict):
                self.value = {}
            _set_at(self.value, _split(path), value)
            await self._commit()
        return self

    def get_path(self, path: str, default: Any = None) -> Any:
        found = _get_at(self.value, _split(path))
        return default if found is _MISSING else found

    async def trim(self) -> Any:
        if self._writable() and isinstance(self.value, str):
            self.value = self.value.strip()
            await self._commit()
        return self.value

    async def append(self, text: str) -> "StateResult":
        if self._writable():
            self.value = ("" if self.value is None else str(self.value)) + text
            await self._commit()
        return self

    async def increment(self, amount: Union[int, float] = 1) -> Any:
        if self._writable():
            current = self.value if isinstance(self.value, (int, float)) and not isinstance(self.value, bool) else 0
            self.value = current + amount
            await self._commit()
        return self.value

    async def decrement(self, amount: Union[int, float] = 1) -> Any:
        return await self.increment(-amount)

    async def remove(self) -> None:
        if self._writable():
            await self.store._delete(self.namespace, self.key)
            self.value = None
            self.status = StateStatus.UNDEFINED


StateListener = Callable[[StateEvent], None]


class ScopedStateStore:
    """
    Namespaced key/value store with permissions and write-behind persistence.

    When a call names neither `parent_id` nor `child_id`, the namespace is
    inferred from the registry: the topmost parent that has an active child
    (or that child, for child-scoped calls), falling back to the first root.
    """

    def __init__(self, storage: Optional[FlowStorage] = None, registry=None,
                 settings: Optional[FlowSettings] = None,
                 encryption: Optional[ValueEncryption] = None):
        self.storage = storage if storage is not None else FlowStorage()
        self.registry = registry
        self.settings = settings or FlowSettings()
        self.encryption = encryption or ValueEncryption()
        self._namespaces: Dict[str, _Namespace] = {}
        self._loads: Dict[str, asyncio.Future] = {}
        self._listeners: List[Tuple[Optional[str], StateListener]] = []
        self._writer = WriteBehind(self.storage, self._snapshot_for, name="state")

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    def resolve_namespace(self, parent_id: Optional[str] = None, child_id: Optional[str] = None,
                          prefer: str = "parent") -> Optional[str]:
        if parent_id:
            return f"{PARENT_PREFIX}{parent_id}"
        if child_id:
            return f"{CHILD_PREFIX}{child_id}"
        return self._infer_namespace(prefer)

    def _infer_namespace(self, prefer: str = "parent") -> Optional[str]:
        if self.registry is None:
            return None
        top = self.registry.find_top_parent_with_active_child()
        if top:
            if prefer == "child":
                current = self.registry.get_current_child(top)
                if current:
                    return f"{CHILD_PREFIX}{current}"
            return f"{PARENT_PREFIX}{top}"
        roots = self.registry.get_roots()
        if roots:
            return f"{PARENT_PREFIX}{roots[0].id}"
        return None

    @staticmethod
    def owner_of(namespace: str) -> str:
        return namespace.split("::", 1)[1] if "::" in namespace else namespace

    async def _ensure(self, name: str) -> _Namespace:
        ns = self._namespaces.get(name)
        if ns is None:
            ns = _Namespace(name)
            self._namespaces[name] = ns
            self._loads[name] = asyncio.ensure_future(self._load_into(ns))
        pending = self._loads.get(name)
        if pending is not None:
            await pending
        return ns

    async def _load_into(self, ns: _Namespace) -> None:
        try:
            record = await self.storage.load(f"{STORAGE_PREFIX}{ns.name}")
            if isinstance(record, dict):
                ns.merge_record(record)
                logger.debug(f"Loaded namespace '{ns.name}' ({len(ns.values)} keys)")
            elif record is not None:
                logger.warning(f"Ignoring non-object record for namespace '{ns.name}'")
        finally:
            self._loads.pop(ns.name, None)

    def _snapshot_for(self, storage_key: str) -> Optional[Dict[str, Any]]:
        ns = self._namespaces.get(storage_key[len(STORAGE_PREFIX):])
        if ns is None or ns.is_empty():
            return None
        return ns.to_record()

    def _persist(self, ns: _Namespace) -> None:
        self._writer.mark_dirty(f"{STORAGE_PREFIX}{ns.name}")

    async def flush(self, timeout: float = 10.0) -> bool:
        """Wait for pending writes."""
        return await self._writer.flush(timeout)

    async def reload(self, parent_id: Optional[str] = None, child_id: Optional[str] = None,
                     namespace: Optional[str] = None) -> None:
        """Drop the in-memory copy of a namespace and read it back from storage."""
        name = namespace or self.resolve_namespace(parent_id, child_id)
        if name is None:
            return
        await self.flush()
        self._namespaces.pop(name, None)
        await self._ensure(name)

    # ------------------------------------------------------------------
    # Internal read / write / delete
    # ------------------------------------------------------------------

    def _touch_meta(self, ns: _Namespace, base: str, stored: Any) -> StateKeyMeta:
        now = time.time()
        meta = ns.meta.get(base)
        if meta is None:
            meta = StateKeyMeta(base, ns.name, now, now, 0)
            ns.meta[base] = meta
        meta.updated_at = now
        meta.size_bytes = _size_of(stored)
        meta.permission = ns.permissions.get(base)
        return meta

    async def _write(self, namespace: str, key: str, value: Any, bucket: str = "values",
                     persist: Optional[bool] = None,
                     permission: Optional[PermissionRecord] = None) -> Any:
        ns = await self._ensure(namespace)
        parts = _split(key)
        base = parts[0]
        target = ns.bucket(bucket)

        if len(parts) > 1:
            existing = target.get(base)
            container = copy.deepcopy(existing) if isinstance(existing, dict) else {}
            _set_at(container, parts[1:], value)
            target[base] = container
            stored = container
        else:
            target[key] = value
            stored = value

        if permission is not None:
            ns.permissions[key] = permission
        self._touch_meta(ns, base, stored)

        if bucket == "values":
            if persist is None:
                persist = base not in ns.volatile and self.settings.persist_state_by_default
            if persist:
                ns.volatile.discard(base)
            else:
                ns.volatile.add(base)
        if bucket != "temp":
            self._persist(ns)

        logger.debug(f"set {namespace}::{key} = {preview_value(value)}")
        self._emit(StateEvent("set", namespace, key, value))
        return value

    def _permission_for(self, ns: _Namespace, key: str) -> Tuple[Optional[str], Optional[PermissionRecord]]:
        parts = _split(key)
        for i in range(len(parts), 0, -1):
            candidate = ".".join(parts[:i])
            perm = ns.permissions.get(candidate)
            if perm is not None:
                return candidate, perm
        return None, None

    def _nested_permissions(self, ns: _Namespace, key: str) -> List[Tuple[str, PermissionRecord]]:
        prefix = f"{key}."
        return [(k, perm) for k, perm in ns.permissions.items() if k.startswith(prefix)]

    async def _read(self, namespace: str, key: str, requester_id: Optional[str] = None) -> StateResult:
        ns = await self._ensure(namespace)
        result = StateResult(key=key, namespace=namespace, store=self)

        perm_key, perm = self._permission_for(ns, key)
        if perm is not None and perm.is_expired():
            logger.debug(f"Evicting expired key {namespace}::{perm_key}")
            await self._delete(namespace, perm_key)
            return result
        if perm is not None and not perm.allows(requester_id):
            logger.debug(f"Denied {namespace}::{key} to '{requester_id}'")
            result.status = StateStatus.DENIED
            return result

        for nested_key, nested in self._nested_permissions(ns, key):
            if nested_key not in ns.permissions:
                continue
            if nested.is_expired():
                logger.debug(f"Evicting expired key {namespace}::{nested_key}")
                await self._delete(namespace, nested_key)
            elif not nested.allows(requester_id):
                logger.debug(f"Denied {namespace}::{key} to '{requester_id}' (restricted {nested_key})")
                result.status = StateStatus.DENIED
                return result

        parts = _split(key)
        for bucket in ("values", "temp", "shared"):
            found = _get_at(ns.bucket(bucket), parts)
            if found is not _MISSING:
                result.value = copy.deepcopy(found)
                result.status = StateStatus.OK
                result.bucket = bucket
                result.meta = ns.meta.get(parts[0])
                return result
        return result

    async def _delete(self, namespace: str, key: str) -> bool:
        ns = await self._ensure(namespace)
        parts = _split(key)
        base = parts[0]
        removed = False
        for bucket in ("values", "temp", "shared"):
            target = ns.bucket(bucket)
            if len(parts) > 1:
                if base in target and _delete_at(target[base], parts[1:]):
                    self._touch_meta(ns, base, target[base])
                    removed = True
            elif key in target:
                del target[key]
                removed = True

        for perm_key in [k for k in ns.permissions if k == key or k.startswith(f"{key}.")]:
            del ns.permissions[perm_key]
        if len(parts) == 1:
            ns.meta.pop(key, None)
            ns.scoped.pop(key, None)
            ns.volatile.discard(key)

        if removed:
            self._persist(ns)
            self._emit(StateEvent("remove", namespace, key))
        return removed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def _coerce_permission(self, permission: Any, namespace: str) -> Optional[PermissionRecord]:
        if permission is None or isinstance(permission, PermissionRecord):
            return permission
        if isinstance(permission, Mapping):
            return PermissionRecord.create(
                mode=PermissionMode(permission.get("mode", "public")),
                owner_id=permission.get("owner_id") or self.owner_of(namespace),
                shared_with=permission.get("shared_with"),
                single_target=permission.get("single_target"),
                ttl=permission.get("ttl"),
            )
        raise TypeError(f"Unsupported permission: {permission!r}")

    async def set(self, key: str, value: Any, *, parent_id: Optional[str] = None,
                  child_id: Optional[str] = None, prefer: str = "parent",
                  persist: Optional[bool] = None, permission: Any = None,
                  temporary: bool = False, scope: Optional[str] = None) -> Any:
        """
        Store `value` under `key`.

        Args:
            persist: write through to storage (defaults to the configured policy)
            permission: PermissionRecord or mapping with mode/shared_with/single_target/ttl
            temporary: keep in the __temp bucket, never persisted
            scope: id of the node this value is meant for; purged with that node's temp state
        """
        namespace = self.resolve_namespace(parent_id, child_id, prefer)
        if namespace is None:
            logger.debug(f"set('{key}'): no namespace could be inferred")
            return None
        perm = self._coerce_permission(permission, namespace)
        stored = await self._write(namespace, key, value, bucket="temp" if temporary else "values",
                                   persist=persist, permission=perm)
        if scope and not temporary:
            self._namespaces[namespace].scoped[_split(key)[0]] = scope
        return stored

    async def get(self, key: str, *, parent_id: Optional[str] = None, child_id: Optional[str] = None,
                  requester_id: Optional[str] = None, prefer: str = "parent") -> StateResult:
        namespace = self.resolve_namespace(parent_id, child_id, prefer)
        if namespace is None:
            return StateResult(key=key)
        return await self._read(namespace, key, requester_id)

    async def take(self, key: str, *, parent_id: Optional[str] = None, child_id: Optional[str] = None,
                   requester_id: Optional[str] = None) -> Any:
        """Read and delete in one step. Returns None when absent or denied."""
        namespace = self.resolve_namespace(parent_id, child_id)
        if namespace is None:
            return None
        result = await self._read(namespace, key, requester_id)
        if not result.ok:
            return None
        await self._delete(namespace, key)
        return result.value

    async def keep(self, key: str, value: Any, *, child_id: Optional[str] = None) -> Any:
        """Ephemeral child-scoped value (the child's __temp bucket)."""
        namespace = self.resolve_namespace(None, child_id, prefer="child")
        if namespace is None:
            return None
        return await self._write(namespace, key, value, bucket="temp")

    async def send(self, key: str, value: Any, to_child_id: str, *, parent_id: Optional[str] = None,
                   persist: Optional[bool] = None, ttl: Optional[float] = None) -> Any:
        """Parent-scoped value readable only by `to_child_id` (and the parent itself)."""
        namespace = self.resolve_namespace(parent_id, None)
        if namespace is None:
            return None
        perm = PermissionRecord.create(PermissionMode.SINGLE, self.owner_of(namespace),
                                       single_target=to_child_id, ttl=ttl)
        return await self._write(namespace, key, value, persist=persist, permission=perm)

    async def share(self, key: str, allow_list: Iterable[str], *, parent_id: Optional[str] = None,
                    ttl: Optional[float] = None) -> Any:
        """Open an existing parent key to the listed ids. Returns its current value."""
        namespace = self.resolve_namespace(parent_id, None)
        if namespace is None:
            return None
        ns = await self._ensure(namespace)
        ns.permissions[key] = PermissionRecord.create(PermissionMode.SHARED, self.owner_of(namespace),
                                                      shared_with=allow_list, ttl=ttl)
        base = _split(key)[0]
        if base in ns.values:
            self._touch_meta(ns, base, ns.values[base])
        self._persist(ns)
        result = await self._read(namespace, key)
        return result.value if result.ok else None

    async def remove(self, key: str, *, parent_id: Optional[str] = None,
                     child_id: Optional[str] = None) -> Any:
        """Delete `key`; returns the removed value."""
        namespace = self.resolve_namespace(parent_id, child_id)
        if namespace is None:
            return None
        result = await self._read(namespace, key)
        if not result.ok:
            return None
        await self._delete(namespace, key)
        return result.value

    async def clear(self, owner_id: Optional[str] = None, scope_kind: str = "parent",
                    key: Optional[str] = None) -> bool:
        """Clear one key from every bucket, or the whole namespace when `key` is None."""
        if owner_id:
            prefix = PARENT_PREFIX if scope_kind == "parent" else CHILD_PREFIX
            namespace = f"{prefix}{owner_id}"
        else:
            namespace = self._infer_namespace(scope_kind)
        if namespace is None:
            return False

        if key is not None:
            ns = await self._ensure(namespace)
            ns.secure.pop(key, None)
            return await self._delete(namespace, key)

        self._loads.pop(namespace, None)
        ns = _Namespace(namespace)
        self._namespaces[namespace] = ns
        self._persist(ns)
        logger.debug(f"Cleared namespace '{namespace}'")
        self._emit(StateEvent("clear", namespace))
        return True

    async def batch(self, parent_id: Optional[str], batch_key: str, values: Mapping[str, Any],
                    persist: Optional[bool] = None) -> Optional[Dict[str, Any]]:
        namespace = self.resolve_namespace(parent_id, None)
        if namespace is None:
            return None
        stored = dict(values)
        await self._write(namespace, f"{BATCH_PREFIX}.{batch_key}", stored, persist=persist)
        self._emit(StateEvent("batch", namespace, batch_key, stored))
        return stored

    async def get_batch(self, parent_id: Optional[str], batch_key: str) -> Optional[Dict[str, Any]]:
        namespace = self.resolve_namespace(parent_id, None)
        if namespace is None:
            return None
        result = await self._read(namespace, f"{BATCH_PREFIX}.{batch_key}")
        return result.value if result.ok else None

    async def remove_batch(self, parent_id: Optional[str], batch_key: str) -> bool:
        namespace = self.resolve_namespace(parent_id, None)
        if namespace is None:
            return False
        return await self._delete(namespace, f"{BATCH_PREFIX}.{batch_key}")

    # ------------------------------------------------------------------
    # Buckets
    # ------------------------------------------------------------------

    async def set_category(self, category: str, values: Mapping[str, Any], *,
                           parent_id: Optional[str] = None, child_id: Optional[str] = None) -> bool:
        namespace = self.resolve_namespace(parent_id, child_id)
        if namespace is None:
            return False
        ns = await self._ensure(namespace)
        ns.categories.setdefault(category, {}).update(values)
        self._persist(ns)
        self._emit(StateEvent("set", namespace, f"{CATEGORIES}.{category}", dict(values)))
        return True

    async def get_category(self, category: str, key: Optional[str] = None, *,
                           parent_id: Optional[str] = None, child_id: Optional[str] = None) -> Any:
        namespace = self.resolve_namespace(parent_id, child_id)
        if namespace is None:
            return None
        ns = await self._ensure(namespace)
        values = ns.categories.get(category)
        if values is None:
            return None
        return copy.deepcopy(values.get(key) if key is not None else values)

    async def secure(self, key: str, value: Any, *, parent_id: Optional[str] = None,
                     child_id: Optional[str] = None, passphrase: Optional[str] = None) -> bool:
        """Encrypt `value` into the __secure bucket. False when no passphrase is configured."""
        passphrase = passphrase or self.settings.secure_passphrase
        if not passphrase:
            logger.warning(f"secure('{key}'): no passphrase configured, value not stored")
            return False
        namespace = self.resolve_namespace(parent_id, child_id)
        if namespace is None:
            return False
        ns = await self._ensure(namespace)
        ns.secure[key] = await asyncio.to_thread(self.encryption.encrypt, value, passphrase)
        self._persist(ns)
        self._emit(StateEvent("set", namespace, f"{SECURE}.{key}"))
        return True

    async def get_secure(self, key: str, *, parent_id: Optional[str] = None,
                         child_id: Optional[str] = None, passphrase: Optional[str] = None) -> Any:
        passphrase = passphrase or self.settings.secure_passphrase
        namespace = self.resolve_namespace(parent_id, child_id)
        if namespace is None or not passphrase:
            return None
        ns = await self._ensure(namespace)
        encrypted = ns.secure.get(key)
        if encrypted is None:
            return None
        try:
            return await asyncio.to_thread(self.encryption.decrypt, encrypted, passphrase)
        except ValueError:
            logger.warning(f"Could not decrypt secure value '{key}' in '{namespace}'")
            return None

    async def set_shared(self, key: str, value: Any) -> Any:
        """Process-wide value in the `global` namespace."""
        return await self._write(GLOBAL_NAMESPACE, key, value, bucket="shared")

    async def get_shared(self, key: str) -> Any:
        ns = await self._ensure(GLOBAL_NAMESPACE)
        found = _get_at(ns.shared, _split(key))
        return None if found is _MISSING else copy.deepcopy(found)

    async def take_shared(self, key: str) -> Any:
        value = await self.get_shared(key)
        if value is not None:
            await self._delete(GLOBAL_NAMESPACE, key)
        return value

    # ------------------------------------------------------------------
    # Ephemeral cleanup
    # ------------------------------------------------------------------

    def ephemeral_ids(self) -> Set[str]:
        """Ids that currently own temp state or are the target of scoped values."""
        ids = set()
        for ns in self._namespaces.values():
            if ns.temp and "::" in ns.name:
                ids.add(self.owner_of(ns.name))
            ids.update(ns.scoped.values())
        return ids

    def cleanup_temp_state(self, ids: Iterable[str]) -> int:
        """Purge __temp and __scoped data belonging to `ids`. Permanent keys are untouched."""
        ids = set(ids)
        purged = 0
        for ns in list(self._namespaces.values()):
            changed = False
            if "::" in ns.name and self.owner_of(ns.name) in ids and ns.temp:
                purged += len(ns.temp)
                ns.temp.clear()
                self._emit(StateEvent("clear", ns.name, TEMP))
            for key, target in list(ns.scoped.items()):
                if target in ids:
                    del ns.scoped[key]
                    if ns.values.pop(key, _MISSING) is not _MISSING:
                        ns.meta.pop(key, None)
                        purged += 1
                        changed = True
                        self._emit(StateEvent("remove", ns.name, key))
            if changed:
                self._persist(ns)
        if purged:
            logger.debug(f"Purged {purged} ephemeral value(s) for {sorted(ids)}")
        return purged

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def suggest(self, prefix: str, *, parent_id: Optional[str] = None, child_id: Optional[str] = None,
                requester_id: Optional[str] = None, max_results: Optional[int] = None,
                include_denied: bool = False) -> List[StateSuggestion]:
        """Keys starting with `prefix` in the caller's loaded parent and child namespaces."""
        limit = max_results if max_results is not None else self.settings.suggest_limit
        namespaces = []
        for name in (self.resolve_namespace(parent_id, None, "parent"),
                     self.resolve_namespace(None, child_id, "child")):
            if name is not None and name not in namespaces:
                namespaces.append(name)

        results: List[StateSuggestion] = []
        seen = set()
        for name in namespaces:
            ns = self._namespaces.get(name)
            if ns is None:
                continue
            for key in sorted(set(ns.values) | set(ns.temp)):
                if not key.startswith(prefix) or (name, key) in seen:
                    continue
                seen.add((name, key))
                _, perm = self._permission_for(ns, key)
                guards = [perm] if perm is not None else []
                guards.extend(p for _, p in self._nested_permissions(ns, key) if not p.is_expired())
                status = StateStatus.OK
                if any(not p.allows(requester_id) for p in guards):
                    status = StateStatus.DENIED
                if status is StateStatus.DENIED and not include_denied:
                    continue
                results.append(StateSuggestion(key, name, status))
                if len(results) >= limit:
                    return results
        return results

    def snapshot(self) -> Dict[str, Any]:
        meta = {}
        permissions = {}
        for ns in self._namespaces.values():
            for key, entry in ns.meta.items():
                meta[f"{ns.name}::{key}"] = entry.to_dict()
            for key, perm in ns.permissions.items():
                permissions[f"{ns.name}::{key}"] = perm.to_dict()
        return {
            "meta": meta,
            "permissions": permissions,
            "parent_namespaces": sorted(n for n in self._namespaces if n.startswith(PARENT_PREFIX)),
            "child_namespaces": sorted(n for n in self._namespaces if n.startswith(CHILD_PREFIX)),
        }

    def on_event(self, callback: StateListener, namespace: Optional[str] = None) -> Callable[[], None]:
        """Subscribe to state events, optionally for one namespace."""
        entry = (namespace, callback)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _emit(self, event: StateEvent) -> None:
        for namespace, listener in list(self._listeners):
            if namespace is not None and namespace != event.namespace:
                continue
            try:
                listener(event)
            except Exception as e:
                logger.error(f"State listener failed on '{event.type}': {e}")
