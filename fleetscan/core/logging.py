"""Structured logging: structlog event loggers rendered through stdlib logging.

Every module logs with ``structlog.get_logger("fleetscan.<component>")`` and
dotted event names; records from third-party stdlib loggers go through the
same formatter via ``foreign_pre_chain``.
"""

from __future__ import annotations

import logging
import logging.config
import os
from typing import Any

import structlog

LEVEL_ENV = "FLEETSCAN_LOG_LEVEL"
FORMAT_ENV = "FLEETSCAN_LOG_FORMAT"
DEFAULT_LEVEL = "WARNING"


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _renderer(fmt: str) -> structlog.types.Processor:
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def _dict_config(level: str, pre_chain: list[Any], renderer: Any) -> dict[str, Any]:
    # stderr keeps `scan --json` output on stdout machine-readable.
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "fleetscan": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": pre_chain,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
            },
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": "fleetscan",
            },
        },
        "root": {"handlers": ["stderr"], "level": DEFAULT_LEVEL},
        "loggers": {"fleetscan": {"level": level}},
    }


def setup_logging(level: str | None = None) -> None:
    """Configure logging for a CLI run.

    ``level`` (``--verbose`` passes ``"DEBUG"``) beats ``$FLEETSCAN_LOG_LEVEL``;
    ``$FLEETSCAN_LOG_FORMAT`` selects ``console`` (default) or ``json``.
    """
    resolved = (level or os.environ.get(LEVEL_ENV) or DEFAULT_LEVEL).upper()
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.config.dictConfig(
        _dict_config(resolved, pre_chain, _renderer(os.environ.get(FORMAT_ENV, "console").lower()))
    )
