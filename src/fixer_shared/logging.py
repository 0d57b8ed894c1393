"""Structured JSON logging with per-task labels."""
from __future__ import annotations

import contextvars
import json
import logging
from datetime import datetime, timezone
from typing import Any

# Label of the detection/apply task the current coroutine belongs to.
task_label_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "task_label", default=""
)

_PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s %(task_label)s%(message)s"


class TaskLabelFilter(logging.Filter):
    """Attach the current task label to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        label = task_label_var.get("")
        record.task_label = f"[{label}] " if label else ""
        return True


class JSONFormatter(logging.Formatter):
    """Custom JSON log formatter."""

    def __init__(self, service_name: str = "style-fixer") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service_name": self.service_name,
            "logger": record.name,
            "task": task_label_var.get(""),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])
        return json.dumps(log_entry)


def setup_logging(
    logger_name: str = "src",
    level: str = "INFO",
    json_format: bool = False,
) -> logging.Logger:
    """Configure logging for the pipeline packages.

    Args:
        logger_name: Parent logger to configure (all modules log under
            ``src.*``).
        level: Log level string (e.g. "INFO", "DEBUG").
        json_format: Emit one JSON object per line instead of plain text.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.addFilter(TaskLabelFilter())
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False

    return logger
