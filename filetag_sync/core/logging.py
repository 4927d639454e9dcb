"""Log output for the sync engine.

Modules log through the standard ``logging`` module; structlog renders every
record, ours and third-party alike, through one formatter on stdout. Lines
written while a cycle runs are tagged with ``sync_cycle_id`` so one cycle's
phases, uploads and mapping misses can be grepped together.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

# Bound by the worker for the duration of one cycle
sync_cycle_id_var: ContextVar[str | None] = ContextVar("sync_cycle_id", default=None)

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _add_sync_cycle_id(logger, method_name, event_dict):
    cycle_id = sync_cycle_id_var.get()
    if cycle_id:
        event_dict["sync_cycle_id"] = cycle_id
    return event_dict


def _renderer(log_format: str):
    if log_format == "console":
        return structlog.dev.ConsoleRenderer()
    # Tag and dimension names are mostly non-ASCII; keep them readable
    return structlog.processors.JSONRenderer(ensure_ascii=False)


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Install the structlog formatter on the root logger.

    Safe to call again (tests and the CLI do); the root handler is replaced,
    not stacked.

    Args:
        log_level: Root level name; unknown names fall back to INFO.
        log_format: "json" for one object per line, "console" for humans.
    """
    pre_chain: list = [
        structlog.contextvars.merge_contextvars,
        _add_sync_cycle_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
