"""
Structured logging for the cron engine.

Every log line emitted while a batch runs carries the job type and the
execution id, and while an item is in flight also the item id, via structlog
context variables. Lines go to stderr so ``cronspine run --json`` keeps a
clean stdout: JSON when stderr is not a terminal (the scheduler's log
collector), a coloured console otherwise.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="cronspine")
            │
            ▼
        structlog processor chain
            1. merge_contextvars      (job_type, execution_id, item_id)
            2. add_log_level / add_logger_name
            3. TimeStamper(iso, utc)
            4. _drop_unset            (variant=None and friends)
            5. _stamp_service
            6. JSONRenderer | ConsoleRenderer

Examples:
    >>> from cronspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> with LogContext(job_type="ai-reports"):
    ...     logger.info("executor.batch_start", items=5)

Tags:
    logging, structlog, observability, json-logging
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service = "cronspine"


def _stamp_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", _service)
    return event_dict


def _drop_unset(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Omit keys bound to ``None`` (an absent variant, no error yet)."""
    return {k: v for k, v in event_dict.items() if v is not None}


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "cronspine",
) -> None:
    """Configure structlog and the stdlib root logger for the process.

    Args:
        level: DEBUG, INFO, WARNING or ERROR.
        json_format: True for JSON, False for console, None to decide from
            whether stderr is a terminal.
        service: Value of the ``service`` key on every line.
    """
    global _service
    _service = service

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    if json_format is None:
        json_format = not sys.stderr.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _drop_unset,
        _stamp_service,
    ]
    if json_format:
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Module logger; call as ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind keys onto every following log line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


class LogContext:
    """Scoped context: keys are bound on enter, previous values restored on exit.

    Nesting is safe, so an item scope inside a batch scope leaves the batch's
    ``job_type`` in place when the item finishes::

        with LogContext(job_type="update-indices:mark-to-market"):
            with LogContext(item_id="01H..."):
                logger.info("pipeline.step_start", step="BACKFILL")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = structlog.contextvars.bind_contextvars(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "LogContext",
]
