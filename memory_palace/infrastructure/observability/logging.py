import structlog
import logging
import sys
from typing import Dict, Any, Optional
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "memory-palace"
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    # Processors for structlog
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Add appropriate renderer based on format
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    # Configure structlog
    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Set service name in context
    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


class SessionLogger:
    """Specialized logger for conversation sessions"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_session_event(
        self,
        event_type: str,
        session_id: str,
        data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        """Log session lifecycle events (connect, stop, disconnect, eviction)"""

        self.logger.info(
            "session_event",
            event_type=event_type,
            session_id=session_id,
            data=data or {},
            **kwargs
        )

    def log_fade_pass(
        self,
        session_id: str,
        newest_index: int,
        updated: int,
        corrupted: int,
        memory_integrity: float
    ):
        """Log the outcome of a decay pass"""

        self.logger.info(
            "fade_pass",
            session_id=session_id,
            newest_index=newest_index,
            updated=updated,
            corrupted=corrupted,
            memory_integrity=round(memory_integrity, 3)
        )

    def log_generation(
        self,
        session_id: str,
        context_size: int,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        """Log a call to the generative service"""

        log = self.logger.info if success else self.logger.warning
        log(
            "generation",
            session_id=session_id,
            context_size=context_size,
            duration_ms=duration_ms,
            success=success,
            error=error
        )

    def log_state_transition(
        self,
        session_id: str,
        from_state: str,
        to_state: str,
        reason: Optional[str] = None
    ):
        """Log session state machine transitions"""

        self.logger.debug(
            "state_transition",
            session_id=session_id,
            from_state=from_state,
            to_state=to_state,
            reason=reason
        )


# Global logger instance
session_logger = SessionLogger("memory_palace.session")


class MetricsCollector:
    """In-process counters, gauges and latency aggregates served by /metrics"""

    def __init__(self):
        self.latencies: Dict[str, Dict[str, float]] = {}
        self.values: Dict[str, float] = {}

    def record_latency(self, operation: str, duration_ms: float):
        stats = self.latencies.setdefault(
            operation, {"count": 0, "sum": 0.0, "min": duration_ms, "max": duration_ms}
        )
        stats["count"] += 1
        stats["sum"] += duration_ms
        stats["min"] = min(stats["min"], duration_ms)
        stats["max"] = max(stats["max"], duration_ms)
        self._log("latency", operation, duration_ms)

    def increment_counter(self, name: str, value: int = 1):
        self.values[name] = self.values.get(name, 0) + value
        self._log("counter", name, value)

    def set_gauge(self, name: str, value: float):
        self.values[name] = value
        self._log("gauge", name, value)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Latencies as count/avg/min/max under ``latency.<op>``, the rest as-is"""

        summary: Dict[str, Any] = {
            f"latency.{operation}": {
                "count": stats["count"],
                "avg": stats["sum"] / stats["count"],
                "min": stats["min"],
                "max": stats["max"],
            }
            for operation, stats in self.latencies.items()
        }
        summary.update(self.values)
        return summary

    def reset(self):
        self.latencies.clear()
        self.values.clear()

    def _log(self, metric_type: str, name: str, value: float):
        session_logger.logger.debug("metric", metric_type=metric_type, name=name, value=value)


# Global metrics collector
metrics = MetricsCollector()
