import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from pathlib import Path
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    service_name: str = "aish-daemon",
    log_file: Optional[Path] = None
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    handler: logging.Handler
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stdout)

    logging.basicConfig(
        format="%(message)s",
        handlers=[handler],
        level=getattr(logging, log_level.upper(), logging.INFO),
        force=True
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
        add_service_context,
    ]

    # Add appropriate renderer based on format
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=log_file is None))

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
        pid=os.getpid()
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    # Query id is bound per request by the daemon
    query_id = structlog.contextvars.get_contextvars().get("query_id")
    if query_id:
        event_dict["query_id"] = query_id

    return event_dict


class ContextLogger:
    """Specialized logger for context lifecycle events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_context_update(
        self,
        layer: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log a mutation of one context layer"""

        self.logger.info(
            "context_update",
            layer=layer,
            action=action,
            details=details or {}
        )

    def log_session_reset(self, reason: str, dropped_session_id: Optional[str] = None):
        """Log that the next query must start a new remote session"""

        self.logger.info(
            "session_reset",
            reason=reason,
            dropped_session_id=dropped_session_id
        )


# Global logger instance
context_logger = ContextLogger("aish.context")


class MetricsCollector:
    """Collect process-local metrics and mirror them to the log"""

    def __init__(self):
        self.metrics: Dict[str, Any] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""

        key = f"latency.{operation}"
        if key not in self.metrics:
            self.metrics[key] = {
                "count": 0,
                "sum": 0.0,
                "min": float('inf'),
                "max": 0.0
            }

        entry = self.metrics[key]
        entry["count"] += 1
        entry["sum"] += duration_ms
        entry["min"] = min(entry["min"], duration_ms)
        entry["max"] = max(entry["max"], duration_ms)

        context_logger.logger.info(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=round(duration_ms, 1),
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""

        self.metrics[name] = self.metrics.get(name, 0) + value

        context_logger.logger.info(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""

        summary = {}
        for key, value in self.metrics.items():
            if isinstance(value, dict) and "count" in value:
                # Latency metric
                summary[key] = {
                    "count": value["count"],
                    "avg": round(value["sum"] / value["count"], 1) if value["count"] > 0 else 0,
                    "min": round(value["min"], 1) if value["min"] != float('inf') else 0,
                    "max": round(value["max"], 1)
                }
            else:
                summary[key] = value

        return summary
