import logging

import pytest

from liturgy_reels.session_log import SessionLog, preview


def test_ring_buffer_drops_oldest():
    log = SessionLog(capacity=3)
    for i in range(5):
        log.info(f"message {i}")
    assert [e.message for e in log.entries()] == ["message 2", "message 3", "message 4"]


def test_entries_is_a_snapshot():
    log = SessionLog(capacity=10)
    log.info("one")
    entries = log.entries()
    log.info("two")
    assert len(entries) == 1


def test_context_and_exception_are_rendered():
    log = SessionLog(capacity=10)
    log.warning("Skipping", block_id="hook")
    log.error("Failed", ValueError("bad input"), kind="audio")
    warning, error = log.entries()
    assert warning.level == "WARNING"
    assert '"block_id": "hook"' in warning.message
    assert error.message.startswith("Failed: ValueError: bad input")
    assert "ERROR: Failed" in log.render()


def test_mirrors_to_stdlib_logging(caplog):
    log = SessionLog(capacity=10, logger=logging.getLogger("test.session"))
    with caplog.at_level(logging.INFO, logger="test.session"):
        log.info("hello")
    assert "hello" in caplog.text


def test_clear():
    log = SessionLog(capacity=10)
    log.info("x")
    log.clear()
    assert log.entries() == []


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        SessionLog(capacity=0)


def test_preview_truncates():
    assert preview("a" * 60) == "a" * 50 + "..."
    assert preview("short") == "short"
    assert preview(None) == ""
