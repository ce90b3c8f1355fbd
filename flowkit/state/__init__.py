"""
Scoped state store and the storage layer shared with navigation history.
"""

from .permissions import PermissionMode, PermissionRecord
from .state_store import ScopedStateStore, StateResult, StateStatus
from .storage import FileStorageAdapter, FlowStorage, MemoryStorageAdapter, StorageAdapter, create_storage

__all__ = [
    'PermissionMode',
    'PermissionRecord',
    'ScopedStateStore',
    'StateResult',
    'StateStatus',
    'FileStorageAdapter',
    'FlowStorage',
    'MemoryStorageAdapter',
    'StorageAdapter',
    'create_storage',
]
