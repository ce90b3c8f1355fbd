"""
Tests for loguru configuration helpers.
"""
import sys

import pytest
from loguru import logger

from flowkit.logging_config import configure_logging, preview_value


@pytest.fixture
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.mark.unit
class TestConfigureLogging:

    def test_explicit_level_and_file(self, isolated_temp_dir, restore_logger, monkeypatch):
        monkeypatch.delenv("FLOWKIT_DEBUG", raising=False)
        log_file = isolated_temp_dir / "flow.log"

        assert configure_logging(level="warning", log_file=str(log_file)) == "WARNING"
        logger.bind(module="flowkit.test").warning("kept")
        logger.bind(module="flowkit.test").info("dropped")
        logger.remove()

        text = log_file.read_text()
        assert "flowkit.test - kept" in text
        assert "dropped" not in text

    def test_debug_environment_wins(self, restore_logger, monkeypatch):
        monkeypatch.setenv("FLOWKIT_DEBUG", "1")
        assert configure_logging(level="error", log_file="") == "DEBUG"

    def test_level_from_environment(self, restore_logger, monkeypatch):
        monkeypatch.delenv("FLOWKIT_DEBUG", raising=False)
        monkeypatch.setenv("FLOWKIT_LOG_LEVEL", "error")
        assert configure_logging(log_file="") == "ERROR"


@pytest.mark.unit
class TestPreviewValue:

    def test_short_values_unchanged(self):
        assert preview_value({"a": 1}) == "{'a': 1}"

    def test_long_values_truncated(self):
        preview = preview_value("x" * 100, max_length=10)
        assert preview == "'xxxxxxxxx..."
        assert len(preview) == 13
