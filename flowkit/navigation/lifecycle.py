"""
Lifecycle hook execution with a declared timeout.

Hooks may be plain functions or coroutine functions. Each call ends in one of
four outcomes; only RESOLVED with a value other than an explicit False lets a
transition proceed.
"""

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from loguru import logger

from .types import Hook

logger = logger.bind(module="flowkit.lifecycle")


class HookOutcome(Enum):
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    THREW = "threw"
    MISSING = "missing"


@dataclass
class HookResult:
    outcome: HookOutcome
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def proceed(self) -> bool:
        """Whether the transition may continue."""
        if self.outcome is HookOutcome.MISSING:
            return True
        if self.outcome is HookOutcome.RESOLVED:
            return self.value is not False
        return False


async def run_hook(hook: Optional[Hook], *args: Any, timeout: float = 8.0, name: str = "hook") -> HookResult:
    """
    Run `hook(*args)` bounded by `timeout` seconds.

    A timed-out hook is cancelled and reported as TIMED_OUT; the caller
    treats it as a decline.
    """
    if hook is None:
        return HookResult(HookOutcome.MISSING)

    try:
        result = hook(*args)
        if inspect.isawaitable(result):
            result = await asyncio.wait_for(result, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{name} timed out after {timeout}s")
        return HookResult(HookOutcome.TIMED_OUT)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(f"{name} raised {type(e).__name__}: {e}")
        return HookResult(HookOutcome.THREW, error=e)

    return HookResult(HookOutcome.RESOLVED, value=result)
