"""
Tests for state read permissions.
"""
import time

import pytest

from flowkit.state.permissions import PermissionMode, PermissionRecord


@pytest.mark.unit
class TestPermissionRecord:

    def test_owner_and_anonymous_always_allowed(self):
        record = PermissionRecord.create(PermissionMode.SINGLE, "main.home", single_target="main.home.feed")
        assert record.allows("main.home")
        assert record.allows(None)

    def test_single_target(self):
        record = PermissionRecord.create("single", "main.home", single_target="main.home.feed")
        assert record.allows("main.home.feed")
        assert not record.allows("main.home.search")

    def test_shared_with(self):
        record = PermissionRecord.create(PermissionMode.SHARED, "main.home",
                                         shared_with=["main.home.feed", "main.home.search"])
        assert record.allows("main.home.search")
        assert not record.allows("main.home.profile")

    def test_public(self):
        assert PermissionRecord.create(PermissionMode.PUBLIC, "main.home").allows("anyone")

    def test_ttl_sets_expiry(self):
        record = PermissionRecord.create(PermissionMode.PUBLIC, "main.home", ttl=30)
        assert record.expires_at == pytest.approx(time.time() + 30, abs=2)
        assert not record.is_expired()
        assert record.is_expired(now=record.expires_at + 1)

    def test_without_ttl_never_expires(self):
        assert not PermissionRecord.create(PermissionMode.PUBLIC, "main.home").is_expired(now=1e12)

    def test_serialized_form(self):
        record = PermissionRecord.create(PermissionMode.SHARED, "main.home", shared_with={"b", "a"})
        data = record.to_dict()
        assert data["mode"] == "shared"
        assert data["ownerId"] == "main.home"
        assert data["sharedWith"] == ["a", "b"]
        assert PermissionRecord.from_dict(data) == record

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            PermissionRecord.create("everyone", "main.home")
