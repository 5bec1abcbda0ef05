"""Structured logging for the xcgen CLI: structlog over stdlib logging.

Every record goes to stderr; stdout carries only what a command prints
(the bundle path, the phase summary, diff lines), so scripts can parse
it. Loggers are named per area: ``xcgen.bazel`` logs each query command
at DEBUG, while ``xcgen.extractor``, ``xcgen.generator`` and
``xcgen.headless`` log pipeline events at INFO.

Environment:
    XCGEN_LOG_LEVEL: log level (default INFO, DEBUG with ``--verbose``)
    XCGEN_LOG_FORMAT: ``console`` or ``json`` (default console)
"""

from __future__ import annotations

import logging.config
import os
from typing import Any

import structlog

# The bazel subprocess runs on asyncio; keep transport chatter out of -v output.
_QUIET_LOGGERS = ("asyncio", "concurrent.futures")


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def bind_command(command: str, **fields: Any) -> None:
    """Tag every following record with the CLI command being run.

    Replaces whatever an earlier command bound. ``None`` values are dropped.
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        command=command, **{k: v for k, v in fields.items() if v is not None}
    )


def setup_logging(verbose: bool = False) -> None:
    """Route structlog and stdlib records through one stderr handler."""
    level = os.environ.get("XCGEN_LOG_LEVEL", "DEBUG" if verbose else "INFO").upper()
    log_format = os.environ.get("XCGEN_LOG_FORMAT", "console").lower()
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structlog": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": pre_chain,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        _renderer(log_format),
                    ],
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "structlog",
                },
            },
            "root": {"handlers": ["stderr"], "level": level},
            "loggers": {
                "xcgen": {"level": level},
                **{name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
            },
        }
    )
