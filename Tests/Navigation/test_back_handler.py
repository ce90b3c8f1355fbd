"""
Tests for priority-ordered back handling.
"""
import pytest

from flowkit.navigation.back_handler import BackBehavior, BackHandlerRegistry

HOME = "main.home"


@pytest.fixture
def handlers():
    return BackHandlerRegistry()


@pytest.mark.unit
class TestBackHandlerRegistry:

    def test_highest_priority_wins(self, handlers):
        handlers.register(HOME, BackBehavior.PREV, priority=1)
        handlers.register(HOME, "close", priority=5)
        handlers.register(HOME, BackBehavior.NONE, priority=5)

        # ties go to the newest registration
        assert handlers.active_handler().behavior is BackBehavior.NONE
        assert len(handlers) == 3

    def test_unregister(self, handlers):
        unregister = handlers.register(HOME, "none")
        unregister()
        unregister()
        assert handlers.active_handler() is None

    def test_filter_by_parent(self, handlers):
        handlers.register(HOME, "prev", priority=1)
        handlers.register("main.checkout", "close", priority=9)
        assert handlers.active_handler(HOME).behavior is BackBehavior.PREV

    def test_custom_requires_callable(self, handlers):
        with pytest.raises(ValueError):
            handlers.register(HOME, BackBehavior.CUSTOM)

    def test_unknown_behavior(self, handlers):
        with pytest.raises(ValueError):
            handlers.register(HOME, "sideways")


@pytest.mark.unit
class TestHandleBackPress:

    @pytest.mark.asyncio
    async def test_default_is_prev_on_active_parent(self, sample_context, handlers):
        runtime = sample_context.runtime
        await runtime.open(HOME, "feed")
        await runtime.open(HOME, "search")

        assert await handlers.handle_back_press(runtime) is True
        assert runtime.get_active(HOME).name == "feed"

    @pytest.mark.asyncio
    async def test_nothing_active_returns_false(self, sample_context, handlers):
        assert await handlers.handle_back_press(sample_context.runtime) is False

    @pytest.mark.asyncio
    async def test_none_lets_host_handle_it(self, sample_context, handlers):
        runtime = sample_context.runtime
        await runtime.open(HOME, "feed")
        await runtime.open(HOME, "search")
        handlers.register(HOME, BackBehavior.NONE)

        assert await handlers.handle_back_press(runtime) is False
        assert runtime.get_active(HOME).name == "search"

    @pytest.mark.asyncio
    async def test_close_behavior(self, sample_context, handlers):
        runtime = sample_context.runtime
        await runtime.open(HOME, "feed")
        handlers.register(HOME, BackBehavior.CLOSE)

        assert await handlers.handle_back_press(runtime) is True
        assert runtime.get_active(HOME) is None

    @pytest.mark.asyncio
    async def test_async_custom_handler(self, sample_context, handlers):
        calls = []

        async def on_back():
            calls.append("back")
            return True

        handlers.register(HOME, BackBehavior.CUSTOM, handler=on_back)
        assert await handlers.handle_back_press(sample_context.runtime) is True
        assert calls == ["back"]

    @pytest.mark.asyncio
    async def test_failing_custom_handler(self, sample_context, handlers):
        def on_back():
            raise RuntimeError("boom")

        handlers.register(HOME, BackBehavior.CUSTOM, handler=on_back)
        assert await handlers.handle_back_press(sample_context.runtime) is False

    @pytest.mark.asyncio
    async def test_context_owns_a_registry(self, sample_context):
        runtime = sample_context.runtime
        await runtime.open(HOME, "feed")
        await runtime.open(HOME, "search")
        sample_context.back_handlers.register(HOME, BackBehavior.PREV, priority=3)

        assert await sample_context.back_handlers.handle_back_press(runtime, HOME) is True
        assert runtime.get_active(HOME).name == "feed"
