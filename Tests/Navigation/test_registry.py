# test_registry.py
# Description: Tests for the node registry
#
# Imports
import pytest
#
# Local Imports
from flowkit.navigation.errors import (
    CycleDetected,
    DuplicateSiblingName,
    FlowErrorType,
    InvalidNode,
    MissingParent,
)
from flowkit.navigation.registry import NodeRegistry, make_id
from flowkit.navigation.types import ChildProps, FlowNode, NodeKind, ParentProps
#
########################################################################################################################
#
# Fixtures:

@pytest.fixture
def registry(build_sample_tree):
    return build_sample_tree(NodeRegistry())


def child(name, parent_id, **props):
    return FlowNode(name=name, kind=NodeKind.CHILD, parent_id=parent_id, props=props or None)

########################################################################################################################
#
# Registration Tests:

@pytest.mark.unit
class TestRegistration:

    def test_ids_are_dotted_paths(self, registry):
        node = registry.get_node("main.home.feed")
        assert node is not None
        assert node.name == "feed"
        assert node.parent_id == "main.home"
        assert node.kind is NodeKind.CHILD

    def test_props_are_typed_per_kind(self, registry):
        assert isinstance(registry.get_node("main.home").props, ParentProps)
        assert isinstance(registry.get_node("main.home.feed").props, ChildProps)

    @pytest.mark.parametrize("spelling, kind", [
        ("page", NodeKind.PARENT),
        ("tab-parent", NodeKind.TAB),
        ("drawer-parent", NodeKind.DRAWER),
    ])
    def test_kind_spellings(self, registry, spelling, kind):
        node = registry.register_node(FlowNode(name="extra", kind=spelling, parent_id="main"))
        assert registry.get_node(node.id).kind is kind

    def test_unknown_kind_is_structural(self, registry):
        with pytest.raises(InvalidNode) as exc_info:
            registry.register_node(FlowNode(name="extra", kind="sidebar", parent_id="main"))
        assert exc_info.value.error_type is FlowErrorType.INVALID_NODE
        assert "main.extra" not in registry

    def test_duplicate_sibling_name_leaves_registry_unchanged(self, registry):
        before = [n.id for n in registry.get_children("main.home")]
        size = len(registry)

        with pytest.raises(DuplicateSiblingName) as exc_info:
            registry.register_node(FlowNode(name="feed", parent_id="main.home", id="main.home.other"))

        assert exc_info.value.error_type is FlowErrorType.DUPLICATE_SIBLING_NAME
        assert [n.id for n in registry.get_children("main.home")] == before
        assert len(registry) == size
        assert "main.home.other" not in registry

    def test_missing_parent(self, registry):
        with pytest.raises(MissingParent):
            registry.register_node(child("orphan", "main.nowhere"))
        assert len(registry.get_children("main.nowhere")) == 0

    def test_only_packs_may_be_roots(self):
        registry = NodeRegistry()
        with pytest.raises(InvalidNode):
            registry.register_node(FlowNode(name="loose", kind=NodeKind.PARENT))

    def test_pack_with_parent_is_registered_as_root(self, registry):
        node = registry.register_node(FlowNode(name="extra", kind=NodeKind.PACK, parent_id="main"))
        assert node.parent_id is None
        assert node.id == "extra"
        assert "extra" in [r.id for r in registry.get_roots()]

    def test_names_with_dots_are_rejected(self, registry):
        with pytest.raises(InvalidNode):
            registry.register_node(child("a.b", "main.home"))

    def test_make_id(self):
        assert make_id(None, "main") == "main"
        assert make_id("main", "home") == "main.home"
        with pytest.raises(InvalidNode):
            make_id("main", "")

    def test_reregistration_merges_props(self, registry):
        registry.register_node(child("feed", "main.home", title="Feed"))
        registry.register_node(child("feed", "main.home", icon="rss"))

        props = registry.get_node("main.home.feed").props
        assert props.title == "Feed"
        assert props.icon == "rss"
        assert [n.name for n in registry.get_children("main.home")] == ["feed", "search", "profile"]

    def test_unknown_props_land_in_extras(self, registry):
        registry.register_node(child("feed", "main.home", badge=3))
        assert registry.get_node("main.home.feed").props.extras == {"badge": 3}

    def test_camel_case_props_are_accepted(self, registry):
        registry.register_node(child("feed", "main.home", isRestrictedIn="nope"))
        assert registry.get_node("main.home.feed").props.is_restricted_in == "nope"

    def test_reparenting_under_own_descendant_is_a_cycle(self, registry):
        with pytest.raises(CycleDetected):
            registry.register_node(FlowNode(
                name="home", kind=NodeKind.PARENT, parent_id="main.home.feed", id="main.home",
            ))
        assert registry.get_node("main.home").parent_id == "main"

########################################################################################################################
#
# Unregistration Tests:

@pytest.mark.unit
class TestUnregistration:

    def test_unregister_cascades_leaves_first(self, registry):
        removed = registry.unregister_node("main.home")

        assert set(removed) == {"main.home", "main.home.feed", "main.home.search", "main.home.profile"}
        assert removed[-1] == "main.home"
        assert registry.get_node("main.home.feed") is None
        assert [n.name for n in registry.get_children("main")] == ["checkout"]

    def test_unregister_unknown_is_noop(self, registry):
        assert registry.unregister_node("nope") == []

    def test_current_child_never_stale(self, registry):
        registry.set_current_child("main.home", "main.home.feed")
        registry.unregister_node("main.home.feed")
        assert registry.get_current_child("main.home") is None

    def test_name_can_be_reused_after_unregister(self, registry):
        registry.unregister_node("main.home.feed")
        node = registry.register_node(child("feed", "main.home"))
        assert node.id == "main.home.feed"
        assert [n.name for n in registry.get_children("main.home")] == ["search", "profile", "feed"]

########################################################################################################################
#
# Lookup Tests:

@pytest.mark.unit
class TestLookups:

    def test_get_child_by_name(self, registry):
        assert registry.get_child_by_name("main.checkout", "cart").id == "main.checkout.cart"
        assert registry.get_child_by_name("main.checkout", "feed") is None

    def test_parent_chain_nearest_first(self, registry):
        chain = [n.id for n in registry.get_parent_chain("main.home.feed")]
        assert chain == ["main.home", "main"]

    def test_get_mom(self, registry):
        assert registry.get_mom("main.checkout.cart") == "main"
        assert registry.get_mom("admin") == "admin"
        assert registry.get_mom("missing") is None

    def test_find_parent_by_child(self, registry):
        assert registry.find_parent_by_child("admin.dashboard.overview") == "admin.dashboard"

    def test_find_top_parent_with_active_child(self, registry):
        assert registry.find_top_parent_with_active_child() is None
        registry.set_current_child("main", "main.home")
        registry.set_current_child("main.home", "main.home.search")
        assert registry.find_top_parent_with_active_child() == "main.home"

    def test_set_current_child_rejects_foreign_child(self, registry):
        registry.set_current_child("main.home", "main.checkout.cart")
        assert registry.get_current_child("main.home") is None

    def test_has_active_modal(self, registry):
        assert registry.has_active_modal() is False
        registry.set_current_child("main.checkout", "main.checkout.cart")
        assert registry.has_active_modal() is True

    def test_active_child_title_follows_deepest_active(self, registry):
        registry.update_node_props("main.home.search", {"title": "Search"})
        registry.set_current_child("main", "main.home")
        registry.set_current_child("main.home", "main.home.search")
        assert registry.get_active_child_title("main") == "Search"

    def test_visibility_defaults(self, registry):
        assert registry.is_tab_visible("main.home") is True
        assert registry.is_drawer_visible("main.home") is False
        registry.set_drawer_visible("main.home", True)
        assert registry.is_drawer_visible("main.home") is True

    def test_debug_tree(self, registry):
        registry.set_current_child("main.home", "main.home.feed")
        tree = registry.debug_tree()
        main = tree["roots"][0]
        assert main["id"] == "main"
        home = main["children"][0]
        assert home["active"] == "main.home.feed"
        assert [c["name"] for c in home["children"]] == ["feed", "search", "profile"]

########################################################################################################################
#
# Notification and Rollback Tests:

@pytest.mark.unit
class TestNotifications:

    def test_every_mutation_is_published(self, registry):
        events = []
        unsubscribe = registry.subscribe(events.append)

        registry.register_node(child("settings", "main.home"))
        registry.update_node_props("main.home.settings", {"title": "Settings"})
        registry.unregister_node("main.home.settings")
        unsubscribe()
        registry.register_node(child("later", "main.home"))

        assert [e.type for e in events] == ["register", "props", "unregister"]
        assert events[0].node_ids == ["main.home.settings"]

    def test_update_props_unknown_node(self, registry):
        assert registry.update_node_props("nope", {"title": "x"}) is False

    def test_update_props_is_shallow_merge(self, registry):
        registry.update_node_props("main.home.feed", {"title": "Feed"})
        registry.update_node_props("main.home.feed", {"icon": "rss"})
        props = registry.get_node("main.home.feed").props
        assert (props.title, props.icon) == ("Feed", "rss")

    def test_failing_listener_does_not_break_registration(self, registry):
        def broken(event):
            raise RuntimeError("boom")

        registry.subscribe(broken)
        node = registry.register_node(child("settings", "main.home"))
        assert node.id in registry

    def test_safe_update_rolls_back(self, registry):
        def mutate(reg):
            reg.register_node(child("a", "main.home"))
            reg.register_node(child("a", "main.home", title="A"))
            reg.register_node(child("b", "main.missing"))

        with pytest.raises(MissingParent):
            registry.safe_update(mutate)

        assert "main.home.a" not in registry
        assert [n.name for n in registry.get_children("main.home")] == ["feed", "search", "profile"]
