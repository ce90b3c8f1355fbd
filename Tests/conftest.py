"""
Root conftest.py for shared test fixtures and configuration.
This file provides common fixtures used across the test suite.
"""

import shutil
import tempfile
from pathlib import Path

import pytest

from flowkit.config import FlowSettings
from flowkit.context import create_flow_context
from flowkit.navigation.types import FlowNode, NodeKind
from flowkit.state.storage import FlowStorage, MemoryStorageAdapter


# ========== Path and File System Fixtures ==========

@pytest.fixture
def isolated_temp_dir():
    """Create an isolated temporary directory that's always cleaned up."""
    temp_dir = tempfile.mkdtemp(prefix="flowkit_test_")
    temp_path = Path(temp_dir)
    yield temp_path
    # Ensure cleanup even if test fails
    if temp_path.exists():
        shutil.rmtree(temp_dir, ignore_errors=True)


# ========== Flow Fixtures ==========

@pytest.fixture
def flow_settings():
    """Settings with short timeouts so hook and grace-delay tests stay fast."""
    return FlowSettings(
        lifecycle_timeout=0.5,
        root_switch_grace=0.01,
        max_history=10,
    )


@pytest.fixture
def memory_storage():
    return FlowStorage(MemoryStorageAdapter())


@pytest.fixture
def alerts():
    """Collects every restriction surfaced by the runtime."""
    return []


@pytest.fixture
def flow_context(flow_settings, memory_storage, alerts):
    """A fresh, fully wired context backed by in-memory storage."""
    return create_flow_context(settings=flow_settings, storage=memory_storage, alert_handler=alerts.append)


def _register(registry, name, parent_id=None, kind=NodeKind.CHILD, **props):
    return registry.register_node(FlowNode(name=name, kind=kind, parent_id=parent_id, props=props or None))


@pytest.fixture
def build_sample_tree():
    """
    Returns a function that registers this tree on a registry:

        main (pack)
        ├── home (parent): feed, search, profile
        └── checkout (modal): cart, payment
        admin (pack)
        └── dashboard (parent): overview
    """
    def _build(registry):
        _register(registry, "main", kind=NodeKind.PACK)
        _register(registry, "home", "main", NodeKind.PARENT)
        for name in ("feed", "search", "profile"):
            _register(registry, name, "main.home")
        _register(registry, "checkout", "main", NodeKind.MODAL)
        for name in ("cart", "payment"):
            _register(registry, name, "main.checkout")
        _register(registry, "admin", kind=NodeKind.PACK)
        _register(registry, "dashboard", "admin", NodeKind.PARENT)
        _register(registry, "overview", "admin.dashboard")
        return registry

    return _build


@pytest.fixture
def sample_context(flow_context, build_sample_tree):
    build_sample_tree(flow_context.registry)
    return flow_context
