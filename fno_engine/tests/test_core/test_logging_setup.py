"""Tests for process-wide logging setup."""

import logging
import logging.handlers

import pytest

from fno_engine.core import logging_setup
from fno_engine.core.logging_setup import setup_logging


@pytest.fixture(autouse=True)
def restore_root():
    root = logging.getLogger()
    level = root.level
    yield
    for handler in logging_setup._installed:
        root.removeHandler(handler)
        handler.close()
    logging_setup._installed.clear()
    root.setLevel(level)


class TestSetupLogging:
    def test_console_only(self):
        setup_logging("debug")
        assert logging.getLogger().level == logging.DEBUG
        assert len(logging_setup._installed) == 1

    def test_daily_file(self, tmp_path):
        setup_logging("warning", tmp_path / "logs", "daily", 7)
        file_handler = logging_setup._installed[-1]
        assert isinstance(file_handler, logging.handlers.TimedRotatingFileHandler)
        assert file_handler.backupCount == 7
        logging.getLogger("fno_engine.test").warning("written")
        file_handler.flush()
        assert "written" in (tmp_path / "logs" / "engine.log").read_text()

    def test_hourly_retention(self, tmp_path):
        setup_logging("info", tmp_path, "hourly", 2)
        assert logging_setup._installed[-1].backupCount == 48

    def test_repeat_replaces_handlers(self, tmp_path):
        setup_logging("info", tmp_path)
        setup_logging("info", tmp_path)
        root = logging.getLogger()
        ours = [h for h in root.handlers if h in logging_setup._installed]
        assert len(ours) == 2

    def test_unknown_level_falls_back_to_info(self):
        setup_logging("chatty")
        assert logging.getLogger().level == logging.INFO
