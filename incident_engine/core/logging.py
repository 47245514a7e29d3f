"""Structured logging setup using structlog.

Components log snake_case event names with key/value context. The root
handler renders JSON lines (or console output for hand-run scripts); the
``decision_log`` logger can additionally be teed to its own JSONL file so
alert routing can be audited separately from the engine log.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

from incident_engine.core.config import LoggingConfig, get_settings

DECISION_LOGGER_NAME = "decision_log"

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def _decision_handler(path: str) -> logging.Handler:
    """File handler for alert decisions; always JSON regardless of console format."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    handler.set_name("decision_log_file")
    return handler


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    config: LoggingConfig | None = None,
) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Log level override (e.g. "DEBUG"). Uses config if None.
        fmt: Renderer format override ("json" or "console"). Uses config if None.
        config: Logging section to use instead of the global settings.
    """
    cfg = config or get_settings().logging
    log_level = getattr(logging, (level or cfg.level).upper(), logging.INFO)

    if (fmt or cfg.format) == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(renderer))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    decision_logger = logging.getLogger(DECISION_LOGGER_NAME)
    for existing in list(decision_logger.handlers):
        decision_logger.removeHandler(existing)
        existing.close()
    if cfg.decision_log_path:
        decision_logger.addHandler(_decision_handler(cfg.decision_log_path))

    for name in cfg.quiet_loggers:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
