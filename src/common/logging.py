"""Structured logging setup built on structlog.

Call `configure_logging()` once at process start, then use
`structlog.get_logger(__name__)` in modules. Events are snake_case names with
bound context; ciphertext handles may be logged, plaintext votes and keys
must not be.
"""

from __future__ import annotations

import logging
import os

import structlog
from structlog.typing import Processor


LOG_LEVEL_ENV = "LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"


def _get_log_level() -> int:
    level_name = os.getenv(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(environment: str = "production") -> None:
    """
    Configure structlog for the process.

    - "production": JSON lines for log aggregation.
    - anything else: colored console output.
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "production":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_account(account: str | None, chain_id: int | None) -> None:
    """Attach wallet identity to every log line emitted by this task."""
    structlog.contextvars.bind_contextvars(account=account, chain_id=chain_id)


__all__ = ["configure_logging", "bind_account"]
