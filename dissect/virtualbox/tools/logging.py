from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def stringify_values(
    logger: structlog.types.WrappedLogger,
    name: str,
    event_dict: structlog.types.EventDict,
) -> dict[Any, str]:
    """Render all event dict values with ``str()``, UUIDs and paths read better that way."""
    return {key: str(value) for key, value in event_dict.items()}


def drop_traceback_unless_debug(
    logger: structlog.types.WrappedLogger,
    name: str,
    event_dict: structlog.types.EventDict,
) -> dict[Any, str]:
    """Replace the traceback of a logged exception with its message above the ``DEBUG`` level."""
    if event_dict.get("exc_info") and logger.getEffectiveLevel() > logging.DEBUG:
        event_dict.pop("exc_info")
        _, exc, _ = sys.exc_info()
        event_dict["exc"] = str(exc)
    return event_dict


def verbosity_to_level(verbose_value: int, be_quiet: bool) -> int:
    if be_quiet:
        return logging.CRITICAL
    if verbose_value <= 0:
        return logging.WARNING
    if verbose_value == 1:
        return logging.INFO
    return logging.DEBUG


def configure_logging(verbose_value: int, be_quiet: bool, as_plain_text: bool = True) -> None:
    """Configure the ``dissect`` root logger and route it through ``structlog``.

    The level is ``WARNING`` by default, ``INFO`` with ``-v``, ``DEBUG`` with ``-vv`` and
    ``CRITICAL`` with ``-q``.
    """

    renderer = (
        structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty(), pad_event=10)
        if as_plain_text
        else structlog.processors.JSONRenderer(sort_keys=True)
    )

    attr_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *attr_processors,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            stringify_values,
            drop_traceback_unless_debug,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.captureWarnings(True)
    logging.getLogger("dissect").setLevel(verbosity_to_level(verbose_value, be_quiet))

    formatter = structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=attr_processors)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logging.getLogger().handlers = [handler]
