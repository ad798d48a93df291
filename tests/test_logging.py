from __future__ import annotations

import pytest
import structlog
from structlog.testing import capture_logs

from memory_palace.infrastructure.observability.logging import (
    MetricsCollector, SessionLogger, setup_logging
)


def test_metrics_summary():
    collector = MetricsCollector()
    collector.record_latency("generation", 100.0)
    collector.record_latency("generation", 300.0)
    collector.increment_counter("turns.completed")
    collector.increment_counter("turns.completed", 2)
    collector.set_gauge("sessions.active", 4)

    summary = collector.get_metrics_summary()

    assert summary["latency.generation"] == {"count": 2, "avg": 200.0, "min": 100.0, "max": 300.0}
    assert summary["turns.completed"] == 3
    assert summary["sessions.active"] == 4


def test_metrics_reset_empties_summary():
    collector = MetricsCollector()
    collector.record_latency("generation", 5.0)
    collector.increment_counter("turns.rejected")

    collector.reset()

    assert collector.get_metrics_summary() == {}


def test_session_logger_events():
    session_log = SessionLogger("test")
    with capture_logs() as logs:
        session_log.log_fade_pass("s1", newest_index=4, updated=4, corrupted=1, memory_integrity=0.61234)
        session_log.log_generation("s1", context_size=3, duration_ms=12.5, success=False, error="boom")

    fade, generation = logs
    assert fade["event"] == "fade_pass"
    assert fade["memory_integrity"] == 0.612
    assert generation["event"] == "generation"
    assert generation["log_level"] == "warning"
    assert generation["error"] == "boom"


@pytest.mark.parametrize(
    "log_format, renderer",
    [("json", structlog.processors.JSONRenderer), ("console", structlog.dev.ConsoleRenderer)],
)
def test_setup_logging_configures_structlog(log_format, renderer):
    setup_logging(log_level="DEBUG", log_format=log_format, service_name="memory-palace-test")
    try:
        processors = structlog.get_config()["processors"]
        # bound session ids reach every entry through the contextvars merge
        assert processors[0] is structlog.contextvars.merge_contextvars
        assert isinstance(processors[-1], renderer)
        assert structlog.contextvars.get_contextvars()["service"] == "memory-palace-test"
        structlog.get_logger("test").info("configured")
    finally:
        structlog.contextvars.clear_contextvars()
        structlog.reset_defaults()
