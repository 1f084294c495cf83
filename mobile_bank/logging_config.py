"""
Structured Logging Configuration Module

Provides JSON-formatted structured logging for ledger, transfer and
authentication operations. The API binds a per-request correlation id so
that every line written while serving a request carries it.
"""

import contextvars
import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(correlation_id)s %(message)s"

# Keys whose values never reach a log line
REDACTED_KEYS = {"password", "password_hash", "token", "access_token", "refresh_token", "secret"}

_correlation_id = contextvars.ContextVar('correlation_id', default=None)


def bind_correlation_id(correlation_id: Optional[str]) -> contextvars.Token:
    """Attach a correlation id to the current context; returns a reset token"""
    return _correlation_id.set(correlation_id)


def reset_correlation_id(token: contextvars.Token) -> None:
    _correlation_id.reset(token)


def current_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def redact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("***" if k.lower() in REDACTED_KEYS else v) for k, v in data.items()}


class CorrelationFilter(logging.Filter):
    """Copies the bound correlation id onto records that lack one"""

    def filter(self, record):
        if getattr(record, 'correlation_id', None) is None:
            record.correlation_id = current_correlation_id()
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        extra = getattr(record, 'extra', None)
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, 'correlation_id', None) or current_correlation_id(),
            "user_id": getattr(record, 'user_id', None),
            "action": getattr(record, 'action', None),
            "resource": getattr(record, 'resource', None),
            "extra": redact(extra) if isinstance(extra, dict) else extra,
        }

        # Remove None values
        log_entry = {k: v for k, v in log_entry.items() if v is not None}

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "mobile_bank",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the application logger.

    Args:
        level: Log level name
        logger_name: Root of the application's logger hierarchy
        log_format: "json" for structured output, "text" for plain lines
        log_file: Optional file path; logs go to stderr when omitted
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.addFilter(CorrelationFilter())
    if log_format == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "mobile_bank") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log an action with structured fields (user, action, resource, extra).

    The correlation id defaults to the one bound for the current request.
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(logger.name, levelno, "(log_action)", 0, message, (), None)
    record.correlation_id = correlation_id or current_correlation_id()
    if user_id:
        record.user_id = user_id
    if action:
        record.action = action
    if resource:
        record.resource = resource
    if extra:
        record.extra = extra

    logger.handle(record)
