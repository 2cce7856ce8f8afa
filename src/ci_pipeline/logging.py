"""Structured JSON logging for pipeline runs.

Every record carries the run id of the CLI invocation and the name of
the stage being executed, both held in context variables so that they
follow the pipeline task across ``await`` points.
"""
from __future__ import annotations

import contextvars
import json
import logging
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import IO, Any, Iterator

PACKAGE_LOGGER = "src"

run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "run_id", default=""
)
stage_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "stage", default=""
)


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def __init__(self, service_name: str = "ci-pipeline") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service_name": self.service_name,
            "logger": record.name,
            "run_id": run_id_var.get(),
            "stage": stage_var.get(),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])
        return json.dumps(log_entry)


def setup_logging(
    service_name: str,
    level: str = "INFO",
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Route every ``src.*`` logger through one JSON handler.

    Repeated calls replace the handler rather than stacking a new one.

    Args:
        service_name: Name recorded in every log entry.
        level: Log level string (e.g. "INFO", "DEBUG").
        stream: Destination; stderr when omitted so stage output on
            stdout stays clean.

    Returns:
        The package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()
    logger.propagate = False

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter(service_name=service_name))
    logger.addHandler(handler)
    return logger


def new_run_id() -> str:
    """Generate a run id and bind it to the current context."""
    run_id = uuid.uuid4().hex[:12]
    run_id_var.set(run_id)
    return run_id


@contextmanager
def stage_context(stage: str) -> Iterator[None]:
    """Tag log records emitted inside the block with *stage*."""
    token = stage_var.set(stage)
    try:
        yield
    finally:
        stage_var.reset(token)
