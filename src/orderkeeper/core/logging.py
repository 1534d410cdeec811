# src/orderkeeper/core/logging.py
"""Structured logging for processors and the applications that host them.

Engine modules log through get_logger(), which returns a structlog logger
carrying the processor's name. configure_logging() routes those records
and the host's own stdlib records through one ProcessorFormatter, so both
come out in the same format.

Observer callbacks and slot bookkeeping run on executor worker threads,
so every record carries the name of the thread that emitted it.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

# Logger namespace of every engine module
ENGINE_LOGGER = "orderkeeper"

# Executor internals that are chatty at DEBUG level.
_NOISY_LOGGERS: tuple[str, ...] = (
    "asyncio",
    "concurrent.futures",
)


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    engine_level: str | None = None,
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        json_output: If True, output JSON. If False, human-readable.
        level: Root log level (DEBUG, INFO, WARNING, ERROR).
        engine_level: Level for the orderkeeper loggers only, e.g. "DEBUG"
            to trace slot submissions without the host's debug output.
            None leaves them at the root level.
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.CallsiteParameterAdder({structlog.processors.CallsiteParameter.THREAD_NAME}),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    final_processors: list[Any] = [ProcessorFormatter.remove_processors_meta]
    if json_output:
        final_processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        final_processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Processors bind their logger at construction; caching would pin the old config
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processors=final_processors, foreign_pre_chain=shared_processors))

    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(log_level)

    engine = logging.getLogger(ENGINE_LOGGER)
    engine.setLevel(getattr(logging, engine_level.upper()) if engine_level is not None else logging.NOTSET)

    # Never make noisy loggers less restrictive than the root level
    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger for an engine module.

    The logger stays lazy, so configure_logging() may run after it was
    created.

    Args:
        name: Logger name (typically __name__).
        **context: Key/value pairs bound to every record, e.g. processor="pages".
    """
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name, **context)
    return logger
