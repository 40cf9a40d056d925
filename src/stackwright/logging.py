"""Structured logging for Stackwright.

Every module obtains its logger through ``get_logger(__name__)``. Events are
snake_case names with keyword fields, rendered by structlog and written
through a single stdlib handler: stderr by default, or a size-rotated file
when ``logging.file`` is configured. Stdout is left to command output.

Each CLI invocation gets a short run id, and the diagram source and stack
target of the command are bound once so that every event of the run can be
correlated.
"""

from __future__ import annotations

import contextvars
import logging
import logging.handlers
import sys
import uuid
from typing import Any

import structlog

from stackwright.config import LoggingConfig

_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("run_id", default=None)


def add_run_id(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor stamping the current run id onto an event."""
    run_id = _run_id.get()
    if run_id is not None:
        event_dict["run_id"] = run_id
    return event_dict


def set_run_id(run_id: str | None) -> None:
    _run_id.set(run_id)


def new_run_id() -> str:
    """Start a new run: generate a twelve character id and make it current."""
    run_id = uuid.uuid4().hex[:12]
    set_run_id(run_id)
    return run_id


def bind_run_context(source: str, target: str) -> None:
    """Attach the diagram source and stack target to every later event."""
    structlog.contextvars.bind_contextvars(source=source, target=target)


def _build_handler(config: LoggingConfig) -> logging.Handler:
    if config.file is None:
        return logging.StreamHandler(sys.stderr)

    config.file.parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        filename=config.file,
        maxBytes=config.rotation_size_mb * 1024 * 1024,
        backupCount=config.retention_count,
        encoding="utf-8",
    )


def setup_logging(config: LoggingConfig) -> None:
    """Install the handler and the structlog processor chain.

    Calling it again replaces the previous handler, so the CLI can reconfigure
    logging once ``--verbose`` or a config file has been read.

    Args:
        config: Logging section of the Stackwright configuration
    """
    level = getattr(logging, config.level)

    handler = _build_handler(config)
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    renderer: Any
    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.contextvars.merge_contextvars,
            add_run_id,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return the structlog logger for module ``name``."""
    return structlog.get_logger(name)
