# test_state_store.py
# Description: Tests for the scoped state store
#
# Imports
import json
import time
#
# 3rd-party Libraries
import pytest
#
# Local Imports
from flowkit.config import FlowSettings
from flowkit.navigation.registry import NodeRegistry
from flowkit.state.permissions import PermissionMode, PermissionRecord
from flowkit.state.state_store import ScopedStateStore, StateStatus
from flowkit.state.storage import FlowStorage, MemoryStorageAdapter
from flowkit.Utils.value_encryption import ValueEncryption
#
########################################################################################################################
#
# Fixtures:

HOME = "main.home"
FEED = "main.home.feed"
SEARCH = "main.home.search"


@pytest.fixture
def adapter():
    return MemoryStorageAdapter()


@pytest.fixture
def registry(build_sample_tree):
    return build_sample_tree(NodeRegistry())


@pytest.fixture
def make_store(adapter, registry):
    def _make(**settings):
        return ScopedStateStore(
            FlowStorage(adapter),
            registry=registry,
            settings=FlowSettings(**settings),
            encryption=ValueEncryption(iterations=1000),
        )
    return _make


@pytest.fixture
def store(make_store):
    return make_store()

########################################################################################################################
#
# Basic reads and writes:

@pytest.mark.unit
class TestReadWrite:

    @pytest.mark.asyncio
    async def test_set_get(self, store):
        await store.set("count", 3, parent_id=HOME)
        result = await store.get("count", parent_id=HOME)
        assert result.ok
        assert result.value == 3
        assert result.meta.namespace == "parent::main.home"

    @pytest.mark.asyncio
    async def test_missing_key_is_undefined(self, store):
        result = await store.get("nothing", parent_id=HOME)
        assert result.status is StateStatus.UNDEFINED
        assert result.value is None

    @pytest.mark.asyncio
    async def test_dot_paths(self, store):
        await store.set("cart", {"items": [], "total": 0}, parent_id=HOME)
        await store.set("cart.total", 12, parent_id=HOME)

        assert (await store.get("cart.total", parent_id=HOME)).value == 12
        assert (await store.get("cart", parent_id=HOME)).value == {"items": [], "total": 12}

    @pytest.mark.asyncio
    async def test_parent_and_child_scopes_are_separate(self, store):
        await store.set("x", "parent", parent_id=HOME)
        await store.set("x", "child", child_id=FEED)
        assert (await store.get("x", parent_id=HOME)).value == "parent"
        assert (await store.get("x", child_id=FEED)).value == "child"

    @pytest.mark.asyncio
    async def test_namespace_inferred_from_active_child(self, store, registry):
        registry.set_current_child(HOME, FEED)

        await store.set("a", 1)
        await store.set("b", 2, prefer="child")

        assert (await store.get("a", parent_id=HOME)).value == 1
        assert (await store.get("b", child_id=FEED)).value == 2

    @pytest.mark.asyncio
    async def test_reads_return_copies(self, store):
        await store.set("list", [1], parent_id=HOME)
        result = await store.get("list", parent_id=HOME)
        result.value.append(2)
        assert (await store.get("list", parent_id=HOME)).value == [1]

    @pytest.mark.asyncio
    async def test_take_reads_once(self, store):
        await store.set("flash", "saved!", parent_id=HOME)
        assert await store.take("flash", parent_id=HOME) == "saved!"
        assert await store.take("flash", parent_id=HOME) is None

    @pytest.mark.asyncio
    async def test_remove_and_clear(self, store):
        await store.set("a", 1, parent_id=HOME)
        await store.set("b", 2, parent_id=HOME)

        assert await store.remove("a", parent_id=HOME) == 1
        assert not (await store.get("a", parent_id=HOME)).ok

        assert await store.clear(HOME, "parent", key="b")
        assert not (await store.get("b", parent_id=HOME)).ok

        await store.set("c", 3, parent_id=HOME)
        assert await store.clear(HOME)
        assert not (await store.get("c", parent_id=HOME)).ok

    @pytest.mark.asyncio
    async def test_events(self, store):
        events = []
        store.on_event(events.append, namespace="parent::main.home")
        await store.set("a", 1, parent_id=HOME)
        await store.set("a", 1, child_id=FEED)
        await store.remove("a", parent_id=HOME)
        assert [(e.type, e.key) for e in events] == [("set", "a"), ("remove", "a")]

########################################################################################################################
#
# Result helpers:

@pytest.mark.unit
class TestStateResult:

    @pytest.mark.asyncio
    async def test_list_helpers(self, store):
        result = await store.get("queue", parent_id=HOME)
        await result.push("b")
        await result.unshift("a")
        assert (await store.get("queue", parent_id=HOME)).value == ["a", "b"]

        assert await result.pop() == "b"
        assert await result.shift() == "a"
        assert (await store.get("queue", parent_id=HOME)).value == []

    @pytest.mark.asyncio
    async def test_numeric_and_text_helpers(self, store):
        counter = await store.get("count", parent_id=HOME)
        assert await counter.increment(5) == 5
        assert await counter.decrement() == 4

        text = await store.get("name", parent_id=HOME)
        await text.save("  flow ")
        assert await text.trim() == "flow"
        await text.append("kit")
        assert (await store.get("name", parent_id=HOME)).value == "flowkit"

    @pytest.mark.asyncio
    async def test_object_helpers(self, store):
        result = await store.get("profile", parent_id=HOME)
        await result.assign({"name": "Ada"})
        await result.set_path("address.city", "London")

        stored = await store.get("profile", parent_id=HOME)
        assert stored.get_path("address.city") == "London"
        assert stored.get_path("address.zip", "n/a") == "n/a"
        assert stored.value["name"] == "Ada"

        await stored.remove()
        assert not (await store.get("profile", parent_id=HOME)).ok

    @pytest.mark.asyncio
    async def test_nested_result_writes_back_to_path(self, store):
        await store.set("cart", {"items": []}, parent_id=HOME)
        items = await store.get("cart.items", parent_id=HOME)
        await items.push({"sku": 1})
        assert (await store.get("cart", parent_id=HOME)).value == {"items": [{"sku": 1}]}

    @pytest.mark.asyncio
    async def test_denied_result_cannot_write(self, store):
        await store.send("token", "abc", FEED, parent_id=HOME)
        denied = await store.get("token", parent_id=HOME, requester_id=SEARCH)
        await denied.save("stolen")
        assert (await store.get("token", parent_id=HOME)).value == "abc"

########################################################################################################################
#
# Permissions:

@pytest.mark.unit
class TestPermissions:

    @pytest.mark.asyncio
    async def test_send_is_single_target(self, store):
        await store.send("token", "abc", FEED, parent_id=HOME)

        assert (await store.get("token", parent_id=HOME, requester_id=FEED)).value == "abc"
        assert (await store.get("token", parent_id=HOME)).value == "abc"
        denied = await store.get("token", parent_id=HOME, requester_id=SEARCH)
        assert denied.status is StateStatus.DENIED
        assert denied.value is None
        assert await store.take("token", parent_id=HOME, requester_id=SEARCH) is None

    @pytest.mark.asyncio
    async def test_share_opens_existing_key(self, store):
        await store.set("notes", "hello", parent_id=HOME, permission={"mode": "single", "single_target": FEED})
        assert (await store.get("notes", parent_id=HOME, requester_id=SEARCH)).denied

        assert await store.share("notes", [FEED, SEARCH], parent_id=HOME) == "hello"
        assert (await store.get("notes", parent_id=HOME, requester_id=SEARCH)).value == "hello"
        assert (await store.get("notes", parent_id=HOME, requester_id="main.home.profile")).denied

    @pytest.mark.asyncio
    async def test_permission_covers_dot_paths(self, store):
        await store.send("secret", {"pin": 1}, FEED, parent_id=HOME)
        assert (await store.get("secret.pin", parent_id=HOME, requester_id=SEARCH)).denied

    @pytest.mark.asyncio
    async def test_restricted_sub_path_hides_its_container(self, store):
        await store.set("cart.items", [1, 2], parent_id=HOME)
        await store.send("cart.items", [1, 2], FEED, parent_id=HOME)

        assert (await store.get("cart.items", parent_id=HOME, requester_id=SEARCH)).denied
        container = await store.get("cart", parent_id=HOME, requester_id=SEARCH)
        assert container.denied
        assert container.value is None
        assert (await store.get("cart", parent_id=HOME, requester_id=FEED)).value == {"items": [1, 2]}

    @pytest.mark.asyncio
    async def test_container_write_helpers_refused_for_restricted_sub_path(self, store):
        await store.send("cart.items", [1], FEED, parent_id=HOME)
        container = await store.get("cart", parent_id=HOME, requester_id=SEARCH)

        await container.assign({"items": []})

        assert container.denied
        assert (await store.get("cart.items", parent_id=HOME, requester_id=FEED)).value == [1]

    @pytest.mark.asyncio
    async def test_suggest_reports_restricted_sub_path(self, store):
        await store.send("cart.items", [1], FEED, parent_id=HOME)

        assert store.suggest("ca", parent_id=HOME, requester_id=SEARCH) == []
        denied = store.suggest("ca", parent_id=HOME, requester_id=SEARCH, include_denied=True)
        assert [(s.key, s.status) for s in denied] == [("cart", StateStatus.DENIED)]

    @pytest.mark.asyncio
    async def test_expired_key_is_evicted_on_read(self, store):
        expired = PermissionRecord(PermissionMode.PUBLIC, HOME, expires_at=time.time() - 1)
        await store.set("otp", "1234", parent_id=HOME, permission=expired)

        result = await store.get("otp", parent_id=HOME)

        assert result.status is StateStatus.UNDEFINED
        assert "parent::main.home::otp" not in store.snapshot()["meta"]

########################################################################################################################
#
# Buckets:

@pytest.mark.unit
class TestBuckets:

    @pytest.mark.asyncio
    async def test_categories(self, store):
        await store.set_category("prefs", {"theme": "dark"}, parent_id=HOME)
        await store.set_category("prefs", {"font": 12}, parent_id=HOME)

        assert await store.get_category("prefs", parent_id=HOME) == {"theme": "dark", "font": 12}
        assert await store.get_category("prefs", "theme", parent_id=HOME) == "dark"
        assert await store.get_category("missing", parent_id=HOME) is None

    @pytest.mark.asyncio
    async def test_batches(self, store):
        await store.batch(HOME, "signup", {"email": "a@b.c", "step": 2})
        assert await store.get_batch(HOME, "signup") == {"email": "a@b.c", "step": 2}
        assert await store.remove_batch(HOME, "signup")
        assert await store.get_batch(HOME, "signup") is None

    @pytest.mark.asyncio
    async def test_shared_namespace(self, store):
        await store.set_shared("session", {"user": 1})
        assert await store.get_shared("session") == {"user": 1}
        assert await store.get_shared("session.user") == 1
        assert await store.take_shared("session") == {"user": 1}
        assert await store.get_shared("session") is None

    @pytest.mark.asyncio
    async def test_secure_round_trip(self, store, adapter):
        assert await store.secure("pin", {"code": 1234}, parent_id=HOME, passphrase="hunter2")
        await store.flush()

        record = json.loads(adapter.items["flow:parent::main.home"])
        assert record["__secure"]["pin"].startswith("enc:")
        assert await store.get_secure("pin", parent_id=HOME, passphrase="hunter2") == {"code": 1234}
        assert await store.get_secure("pin", parent_id=HOME, passphrase="wrong") is None

    @pytest.mark.asyncio
    async def test_secure_without_passphrase(self, store):
        assert await store.secure("pin", 1, parent_id=HOME) is False
        assert await store.get_secure("pin", parent_id=HOME) is None

    @pytest.mark.asyncio
    async def test_configured_passphrase(self, make_store):
        store = make_store(secure_passphrase="from-config")
        assert await store.secure("pin", 7, parent_id=HOME)
        assert await store.get_secure("pin", parent_id=HOME) == 7

    @pytest.mark.asyncio
    async def test_keep_and_temp_cleanup(self, store):
        await store.keep("draft", "typing...", child_id=FEED)
        await store.set("hint", "scoped", parent_id=HOME, scope=SEARCH)

        assert store.ephemeral_ids() == {FEED, SEARCH}
        assert store.cleanup_temp_state([FEED, SEARCH]) == 2

        assert not (await store.get("draft", child_id=FEED)).ok
        assert not (await store.get("hint", parent_id=HOME)).ok
        assert store.ephemeral_ids() == set()

########################################################################################################################
#
# Persistence:

@pytest.mark.unit
class TestPersistence:

    @pytest.mark.asyncio
    async def test_reload_round_trip(self, store, adapter):
        await store.set("count", 3, parent_id=HOME)
        await store.set("scratch", 1, parent_id=HOME, persist=False)
        await store.set("tmp", 1, parent_id=HOME, temporary=True)
        await store.send("token", "abc", FEED, parent_id=HOME)

        await store.reload(parent_id=HOME)

        assert (await store.get("count", parent_id=HOME)).value == 3
        assert not (await store.get("scratch", parent_id=HOME)).ok
        assert not (await store.get("tmp", parent_id=HOME)).ok
        assert (await store.get("token", parent_id=HOME, requester_id=SEARCH)).denied
        record = json.loads(adapter.items["flow:parent::main.home"])
        assert record["__temp"] == {}

    @pytest.mark.asyncio
    async def test_persist_disabled_by_default(self, make_store, adapter):
        store = make_store(persist_state_by_default=False)
        await store.set("count", 3, parent_id=HOME)
        await store.flush()
        assert "flow:parent::main.home" not in adapter.items

    @pytest.mark.asyncio
    async def test_record_written_before_first_read_is_loaded(self, store, adapter):
        adapter.items["flow:parent::main.home"] = json.dumps({"saved": 1, "__categories": {"p": {"a": 1}}})

        assert (await store.get("saved", parent_id=HOME)).value == 1
        assert await store.get_category("p", "a", parent_id=HOME) == 1

    @pytest.mark.asyncio
    async def test_emptied_namespace_removes_record(self, store, adapter):
        await store.set("a", 1, parent_id=HOME)
        await store.flush()
        await store.remove("a", parent_id=HOME)
        await store.flush()
        assert "flow:parent::main.home" not in adapter.items

    @pytest.mark.asyncio
    async def test_corrupt_namespace_reads_empty(self, store, adapter):
        adapter.items["flow:parent::main.home"] = "{broken"
        assert not (await store.get("anything", parent_id=HOME)).ok
        assert any(k.startswith("flowstate:corrupt:flow:parent::main.home:") for k in adapter.items)

########################################################################################################################
#
# Introspection:

@pytest.mark.unit
class TestIntrospection:

    @pytest.mark.asyncio
    async def test_suggest(self, store):
        for key in ("cart", "cards", "user"):
            await store.set(key, 1, parent_id=HOME)
        await store.send("cargo", 1, FEED, parent_id=HOME)

        keys = [s.key for s in store.suggest("car", parent_id=HOME, requester_id=SEARCH)]
        assert keys == ["cards", "cart"]

        with_denied = store.suggest("car", parent_id=HOME, requester_id=SEARCH, include_denied=True)
        assert [(s.key, s.status) for s in with_denied if s.key == "cargo"] == [("cargo", StateStatus.DENIED)]
        assert len(store.suggest("", parent_id=HOME, max_results=2)) == 2

    @pytest.mark.asyncio
    async def test_snapshot(self, store):
        await store.set("a", {"x": 1}, parent_id=HOME)
        await store.send("b", 2, FEED, parent_id=HOME)
        await store.set("c", 3, child_id=FEED)

        snapshot = store.snapshot()

        assert snapshot["meta"]["parent::main.home::a"]["sizeBytes"] > 0
        assert snapshot["permissions"]["parent::main.home::b"]["singleTarget"] == FEED
        assert snapshot["parent_namespaces"] == ["parent::main.home"]
        assert snapshot["child_namespaces"] == ["child::main.home.feed"]
