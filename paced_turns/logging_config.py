"""Structured logging configuration for paced conversational turns.

Provides consistent, structured logging with:
- JSON output for production (machine-parseable)
- Human-readable output for development
- Delivery and lifecycle event tracking
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    FIELDS = (
        "event_type",
        "conversation_id",
        "group_id",
        "message_index",
        "delay_ms",
        "latency_ms",
        "component",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in self.FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)
        if hasattr(record, "extra_data"):
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter with colors for console output."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        level = f"{color}{record.levelname:8}{self.RESET}"

        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        msg = f"{timestamp} {level} [{record.name}] {record.getMessage()}"

        context_parts = []
        if hasattr(record, "group_id"):
            context_parts.append(f"group={record.group_id}")
        if hasattr(record, "message_index"):
            context_parts.append(f"index={record.message_index}")
        if hasattr(record, "delay_ms"):
            context_parts.append(f"delay={record.delay_ms:.0f}ms")
        if hasattr(record, "latency_ms"):
            context_parts.append(f"latency={record.latency_ms:.0f}ms")

        if context_parts:
            msg += f" ({', '.join(context_parts)})"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class TurnsLogger(logging.LoggerAdapter):
    """Logger adapter with convenience methods for structured logging."""

    def process(self, msg, kwargs):
        # Keep per-call extras; LoggerAdapter would otherwise replace them.
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def event(
        self,
        event_type: str,
        message: str,
        conversation_id: str | None = None,
        **kwargs: Any,
    ):
        """Log a lifecycle event with structured data."""
        extra = {
            "event_type": event_type,
            **kwargs,
        }
        if conversation_id:
            extra["conversation_id"] = conversation_id
        self.info(message, extra=extra)

    def delivery(
        self,
        group_id: str | None,
        message_index: int,
        total_in_group: int,
        delay_ms: float,
        content_length: int,
    ):
        """Log the delivery of one paced turn."""
        extra = {
            "component": "queue",
            "group_id": group_id,
            "message_index": message_index,
            "delay_ms": delay_ms,
            "extra_data": {
                "total_in_group": total_in_group,
                "content_length": content_length,
            },
        }
        self.debug(
            f"Delivered turn {message_index + 1}/{total_in_group} ({content_length} chars)",
            extra=extra,
        )

    def latency(
        self,
        component: str,
        latency_ms: float,
        message: str | None = None,
        **kwargs: Any,
    ):
        """Log a latency measurement."""
        msg = message or f"{component} completed"
        extra = {
            "component": component,
            "latency_ms": latency_ms,
            **kwargs,
        }
        self.info(msg, extra=extra)


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: str | None = None,
) -> None:
    """Configure logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        json_output: Use JSON format (for production/parsing).
        log_file: Optional file to write logs to.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    if json_output:
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())
    root_logger.addHandler(console_handler)

    # File output is always JSON
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> TurnsLogger:
    """Get a structured logger for a component.

    Args:
        name: Logger name (typically __name__).

    Returns:
        TurnsLogger with structured logging methods.
    """
    return TurnsLogger(logging.getLogger(name), {})
