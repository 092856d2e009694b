"""Tests for pipeline logging setup."""

import logging
import logging.handlers

import pytest

from agent_logging import configure_pipeline_loggers, setup_logging
from questlog.telemetry import DiscardReason, DiscardTracker


@pytest.fixture
def restore_loggers():
    names = ("questlog", "goals", "questlog_test")
    saved = {}
    for name in names:
        logger = logging.getLogger(name)
        saved[name] = (list(logger.handlers), logger.propagate, logger.level)
    yield
    for name, (handlers, propagate, level) in saved.items():
        logger = logging.getLogger(name)
        for handler in logger.handlers:
            if handler not in handlers:
                handler.close()
        logger.handlers = handlers
        logger.propagate = propagate
        logger.setLevel(level)


def _flush(logger):
    for handler in logger.handlers:
        handler.flush()


def test_setup_logging_writes_rotating_file(tmp_path, restore_loggers):
    logger = setup_logging("questlog_test", log_dir=tmp_path, log_level="DEBUG", console_output=False)
    logger.info("hello from test")
    _flush(logger)

    files = list(tmp_path.glob("questlog_test_*.log"))
    assert len(files) == 1
    assert "hello from test" in files[0].read_text()
    assert isinstance(logger.handlers[0], logging.handlers.RotatingFileHandler)
    assert logger.handlers[0].maxBytes == 10 * 1024 * 1024
    assert logger.level == logging.DEBUG


def test_reconfigure_replaces_only_own_handlers(tmp_path, restore_loggers):
    logger = logging.getLogger("questlog_test")
    host_handler = logging.NullHandler()
    logger.addHandler(host_handler)

    setup_logging("questlog_test", log_dir=tmp_path / "first", console_output=True)
    setup_logging("questlog_test", log_dir=tmp_path / "second", log_level="WARNING", console_output=False)

    assert host_handler in logger.handlers
    own = [h for h in logger.handlers if h is not host_handler]
    assert len(own) == 1
    assert own[0].baseFilename.startswith(str(tmp_path / "second"))
    assert logger.level == logging.WARNING


def test_unknown_level_falls_back_to_info(tmp_path, monkeypatch, restore_loggers):
    monkeypatch.setenv("LOG_LEVEL", "chatty")

    logger = setup_logging("questlog_test", log_dir=tmp_path, console_output=False)

    assert logger.level == logging.INFO


def test_pipeline_loggers_default_to_state_dir(tmp_path, monkeypatch, restore_loggers):
    monkeypatch.setenv("STATE_DIR", str(tmp_path))

    loggers = configure_pipeline_loggers(console_output=False)

    assert [lg.name for lg in loggers] == ["questlog", "goals"]
    assert (tmp_path / "logs" / "questlog").is_dir()
    assert (tmp_path / "logs" / "goals").is_dir()


def test_discards_reach_pipeline_log(tmp_path, restore_loggers):
    configure_pipeline_loggers(log_level="INFO", log_dir=tmp_path, console_output=False)
    tracker = DiscardTracker()

    tracker.record(DiscardReason.LOW_CONFIDENCE, "status", "sub_goal=5 confidence=0.5")
    _flush(logging.getLogger("questlog"))

    text = next((tmp_path / "questlog").glob("*.log")).read_text()
    assert "reason=low_confidence" in text
