"""
Read permissions for state entries.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Set


class PermissionMode(str, Enum):
    PUBLIC = "public"
    SHARED = "shared"
    SINGLE = "single"


@dataclass
class PermissionRecord:
    """Who may read a key. The owner can always read its own data."""
    mode: PermissionMode
    owner_id: str
    shared_with: Set[str] = field(default_factory=set)
    single_target: Optional[str] = None
    ttl: Optional[float] = None
    expires_at: Optional[float] = None

    @classmethod
    def create(
        cls,
        mode: PermissionMode,
        owner_id: str,
        shared_with: Optional[Iterable[str]] = None,
        single_target: Optional[str] = None,
        ttl: Optional[float] = None,
    ) -> "PermissionRecord":
        """Build a record; `ttl` is in seconds and fixes `expires_at` from now."""
        return cls(
            mode=PermissionMode(mode),
            owner_id=owner_id,
            shared_with=set(shared_with or ()),
            single_target=single_target,
            ttl=ttl,
            expires_at=time.time() + ttl if ttl else None,
        )

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at

    def allows(self, requester_id: Optional[str]) -> bool:
        # anonymous reads come from the owning scope itself
        if requester_id is None or requester_id == self.owner_id:
            return True
        if self.mode is PermissionMode.PUBLIC:
            return True
        if self.mode is PermissionMode.SINGLE:
            return requester_id == self.single_target
        return requester_id in self.shared_with

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "ownerId": self.owner_id,
            "sharedWith": sorted(self.shared_with),
            "singleTarget": self.single_target,
            "ttl": self.ttl,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionRecord":
        return cls(
            mode=PermissionMode(data.get("mode", "public")),
            owner_id=data.get("ownerId", "unknown"),
            shared_with=set(data.get("sharedWith") or ()),
            single_target=data.get("singleTarget"),
            ttl=data.get("ttl"),
            expires_at=data.get("expiresAt"),
        )
