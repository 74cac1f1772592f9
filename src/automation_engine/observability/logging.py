"""
Logging setup for the worker.

Engine code logs through structlog, while the broker and store adapters use
module-level stdlib loggers. Both are rendered by one handler whose
`ProcessorFormatter` turns every record into a JSON line tagged with the
service name.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Any

import structlog

# Client libraries that log every frame or heartbeat at INFO
NOISY_LOGGERS = ("aio_pika", "aiormq", "pymongo")


class JSONLogHandler(logging.StreamHandler):
    """The handler installed by `configure_logging`."""


def configure_logging(
    service_name: str, log_level: str, stream: IO[str] | None = None
) -> logging.Handler:
    """Route structlog and stdlib logging to JSON lines on `stream` (stdout).

    Reconfiguring replaces the handler installed by an earlier call.
    Returns the installed handler.
    """
    level = logging.getLevelName(log_level)
    pre_chain = _pre_chain(service_name)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = JSONLogHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.EventRenamer("message"),
                structlog.processors.JSONRenderer(),
            ],
        )
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, JSONLogHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return handler


def _pre_chain(service_name: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        _tag_service(service_name),
    ]


def _tag_service(service_name: str) -> structlog.types.Processor:
    def processor(logger: Any, method_name: str, event_dict: Any) -> Any:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor
