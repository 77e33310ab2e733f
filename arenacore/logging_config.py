"""Structured logging configuration using structlog.

Every record carries the service name and environment. Competitive
operations scope their identifiers (tournament, match, queue mode,
participant) with ``bound_context`` so library modules logging through
``logging.getLogger(__name__)`` pick them up without passing them around.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SERVICE_NAME = "arenacore"

# Identifiers an operation may scope onto its log records
CONTEXT_KEYS = ("tournament_id", "match_id", "mode", "participant_id")


def service_context(app_env: str) -> Processor:
    """Processor stamping ``service`` and ``env`` onto each record."""

    def add_service_context(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("env", app_env)
        return event_dict

    return add_service_context


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    app_env: str = "development",
) -> None:
    """Configure structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: If True, output JSON logs
        app_env: Application environment, stamped on every record
    """
    use_json = json_logs or app_env == "production"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        service_context(app_env),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
        structlog.processors.StackInfoRenderer(),
    ]

    if use_json:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        shared_processors.append(structlog.dev.set_exc_info)
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Library modules log through stdlib; render them with the same chain
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # Lock polling and HTTP retries are chatty below WARNING
    for noisy in ("httpx", "httpcore", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("match_committed", tournament_id="t1", match_id="m1")
    """
    return structlog.get_logger(name)


@contextmanager
def bound_context(**identifiers: Any) -> Iterator[None]:
    """Scope competitive identifiers onto every record logged inside the block.

    ``None`` values are skipped. Values bound by an enclosing block are
    restored on exit.

    Usage:
        with bound_context(tournament_id="t1", match_id="t1:WB-R1-M1"):
            await engine.submit_match_result(...)

    Raises:
        ValueError: a key outside CONTEXT_KEYS
    """
    unknown = sorted(set(identifiers) - set(CONTEXT_KEYS))
    if unknown:
        raise ValueError(f"Unknown log context keys: {', '.join(unknown)}")
    values = {key: value for key, value in identifiers.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**values):
        yield
