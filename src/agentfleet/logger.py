"""Logging setup: stdlib module loggers rendered through structlog."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import structlog

# Third-party loggers that are chatty at DEBUG and never useful here.
_QUIET_LOGGERS = ("asyncio",)


def setup_logging(
    *,
    debug: bool = False,
    json_output: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure logging for the CLI process.

    Library modules log through ``logging.getLogger(__name__)``; records end
    up on stderr, and additionally in *log_file* (the debug log under the
    storage directory) when one is given.

    Args:
        debug: Enable DEBUG level logging.
        json_output: Render records as JSON lines instead of console output.
        log_file: Optional append-only file receiving the same records.
    """
    level = logging.DEBUG if debug else logging.INFO

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    renderer: Any = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(),
                ],
            )
        )
        handlers.append(file_handler)
    handlers[0].setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "agentfleet", **kwargs: Any) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, optionally pre-bound with context (e.g. ``session_id``)."""
    return structlog.get_logger(name, **kwargs)
