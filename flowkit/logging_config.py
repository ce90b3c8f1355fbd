"""
Logging configuration for the flowkit runtime.

Provides a single `configure_logging()` entry point plus helpers that keep
state values out of the logs at normal levels.
"""

import os
import sys
from typing import Any, Optional

from loguru import logger

from .config import get_flow_setting


# Preview truncation for values written to the logs
VALUE_PREVIEW_LENGTH = int(os.environ.get("FLOWKIT_LOG_PREVIEW_LENGTH", "60"))

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[module]}</cyan> - <level>{message}</level>"
)


def _resolve_level(level: Optional[str]) -> str:
    if os.environ.get("FLOWKIT_DEBUG", "").lower() in ("1", "true", "yes"):
        return "DEBUG"
    if level:
        return level.upper()
    env_level = os.environ.get("FLOWKIT_LOG_LEVEL")
    if env_level:
        return env_level.upper()
    return str(get_flow_setting("logging", "level", "INFO")).upper()


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    rotation: str = "10 MB",
    retention: str = "1 week",
) -> str:
    """
    Configure loguru sinks for flowkit.

    Should be called once by the host application at startup. Returns the
    level that was applied.
    """
    resolved = _resolve_level(level)
    logger.remove()
    logger.configure(extra={"module": "flowkit"})
    logger.add(sys.stderr, level=resolved, format=LOG_FORMAT, colorize=True)

    log_file = log_file if log_file is not None else get_flow_setting("logging", "log_file", "")
    if log_file:
        logger.add(
            os.path.expanduser(log_file),
            level=resolved,
            format=LOG_FORMAT,
            rotation=rotation,
            retention=retention,
        )

    logger.info(f"flowkit logging configured: level={resolved}, file={log_file or 'none'}")
    return resolved


def preview_value(value: Any, max_length: Optional[int] = None) -> str:
    """Short repr of a stored value for log lines."""
    if max_length is None:
        max_length = VALUE_PREVIEW_LENGTH
    text = repr(value)
    if len(text) <= max_length:
        return text
    return f"{text[:max_length]}..."
