"""
Structured logging for the portal.

Every event goes through structlog. Request and CLI command context is bound
through contextvars so service code never passes request ids around, and
credentials are masked before anything is rendered.
"""
import logging
import sys
from typing import Any, MutableMapping

import structlog
from pythonjsonlogger import jsonlogger

from origin_portal.config import get_settings

REDACTED = "[redacted]"

# Matched against lowercased event keys.
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "password_hash",
        "secret_key",
        "paystack_secret_key",
        "admin_api_key",
        "authorization",
        "signature",
        "x-paystack-signature",
    }
)


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask credential values, including one level down in dict values."""
    for key, value in list(event_dict.items()):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: REDACTED if str(k).lower() in SENSITIVE_KEYS else v for k, v in value.items()
            }
    return event_dict


def add_service_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    settings = get_settings()
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("env", settings.app_env)
    return event_dict


def bind_request_context(request_id: str, method: str, path: str) -> None:
    """Attach HTTP request fields to every event logged while serving it."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)


def bind_command_context(command: str) -> None:
    """Attach the operator command name to every event a CLI run logs."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(command=command)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


def setup_logging() -> None:
    """
    Configure structlog and the stdlib root logger.

    structlog events are rendered as JSON (or console output when
    ``log_json`` is off); stdlib records from uvicorn and friends go through
    python-json-logger so the stream stays one JSON object per line.
    """
    settings = get_settings()

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            add_service_context,
            redact_secrets,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_json:
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s",
                rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
            )
        )
    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured", log_level=settings.log_level, json=settings.log_json
    )
