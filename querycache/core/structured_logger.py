"""
structlog setup for querycache.

Every module logs through ``get_logger(__name__)`` with a snake_case event
name and keyword context. Output goes through the stdlib root logger, so an
application that already configures ``logging`` keeps control of handlers;
``configure_structured_logging`` is only needed for standalone use.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

REDACTED = "***REDACTED***"

# SQL longer than this is cut in log events.
MAX_SQL_LOG_LENGTH = 500

# Key fragments whose values never reach a log line.
_SECRET_KEY_PARTS = (
    "password",
    "passwd",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "dsn",
    "database_url",
    "redis_url",
    "connection_string",
)

# Bound statement parameters carry application data.
_PARAMETER_KEYS = frozenset({"params", "parameters", "bound_params"})

_SECRET_IN_TEXT = re.compile(
    r"(?P<name>password|passwd|pwd|token|secret|api_key|key)=[\"']?[^\"'&\s]*[\"']?"
    r"|(?P<bearer>bearer)\s+\S+"
    r"|(?P<scheme>rediss?|postgres(?:ql)?|mysql)://[^@\s/]*@",
    re.IGNORECASE,
)

_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3")


def _redact_text(value: str) -> str:
    def _sub(match: re.Match[str]) -> str:
        if match.group("name"):
            return f"{match.group('name')}={REDACTED}"
        if match.group("bearer"):
            return f"{match.group('bearer')} {REDACTED}"
        return f"{match.group('scheme')}://{REDACTED}@"

    return _SECRET_IN_TEXT.sub(_sub, value)


def _redact(mapping: dict[str, Any]) -> dict[str, Any]:
    clean: dict[str, Any] = {}
    for key, value in mapping.items():
        lowered = str(key).lower()
        if any(part in lowered for part in _SECRET_KEY_PARTS):
            clean[key] = REDACTED
        elif isinstance(value, dict):
            clean[key] = _redact(value)
        elif isinstance(value, str):
            clean[key] = _redact_text(value)
        else:
            clean[key] = value
    return clean


def censor_sensitive_data(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask credentials by key name and inside free-text values."""
    return _redact(event_dict)


def drop_statement_parameters(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key in _PARAMETER_KEYS.intersection(event_dict):
        value = event_dict[key]
        event_dict[key] = f"<{len(value)} values>" if hasattr(value, "__len__") else REDACTED
    return event_dict


def protect_log_injection(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key, value in event_dict.items():
        if isinstance(value, str) and ("\n" in value or "\r" in value):
            event_dict[key] = value.replace("\r", "\\r").replace("\n", "\\n")
    return event_dict


def add_component(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("component", "querycache")
    return event_dict


def configure_structured_logging(
    log_level: str = "INFO", json_logs: bool = True, development_mode: bool = False
) -> None:
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_component,
        drop_statement_parameters,
        protect_log_injection,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        censor_sensitive_data,
    ]

    if json_logs and not development_mode:
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=development_mode)

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
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None):
    return structlog.get_logger(name) if name else structlog.get_logger()


def truncate_sql(sql: str, limit: int = MAX_SQL_LOG_LENGTH) -> str:
    """Shorten SQL for log events."""
    if len(sql) <= limit:
        return sql
    return sql[:limit] + "…"


__all__ = [
    "MAX_SQL_LOG_LENGTH",
    "REDACTED",
    "add_component",
    "censor_sensitive_data",
    "configure_structured_logging",
    "drop_statement_parameters",
    "get_logger",
    "protect_log_injection",
    "truncate_sql",
]
