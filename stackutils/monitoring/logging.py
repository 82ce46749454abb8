"""
Structured logging for stackutils
"""

import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional
from contextvars import ContextVar

import structlog
from structlog.stdlib import LoggerFactory
from structlog.processors import JSONRenderer, add_log_level, StackInfoRenderer

from stackutils.core.config import settings

# Context variables for the unit of work currently running on this thread
action_context: ContextVar[Optional[str]] = ContextVar('action', default=None)
owner_context: ContextVar[Optional[str]] = ContextVar('owner', default=None)


def add_action_context(logger, method_name, event_dict):
    """Add the running action label and pool owner to log entries"""
    action = action_context.get()
    if action:
        event_dict['action'] = action

    owner = owner_context.get()
    if owner:
        event_dict['owner'] = owner

    return event_dict


def add_service_info(logger, method_name, event_dict):
    """Add service information to log entries"""
    event_dict['service'] = settings.service_name
    return event_dict


def add_timestamp_iso(logger, method_name, event_dict):
    """Add ISO timestamp to log entries"""
    event_dict['timestamp'] = datetime.now(timezone.utc).isoformat()
    return event_dict


class ActionContextFilter(logging.Filter):
    """Copies the action context onto stdlib log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.action = action_context.get() or "-"
        record.owner = owner_context.get() or "-"
        return True


def setup_structured_logging(log_level: Optional[str] = None, enable_json: Optional[bool] = None):
    """
    Setup structured logging

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL),
            defaults to ``settings.log_level``
        enable_json: Whether to use JSON format, defaults to ``settings.log_json``
    """
    log_level = (log_level or settings.log_level).upper()
    if enable_json is None:
        enable_json = settings.log_json

    processors = [
        add_action_context,
        add_service_info,
        add_timestamp_iso,
        add_log_level,
        StackInfoRenderer(),
    ]

    if enable_json:
        processors.append(JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ActionContextFilter())
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(threadName)s] [%(owner)s/%(action)s] %(name)s: %(message)s"
    ))

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level))
    if not any(isinstance(f, ActionContextFilter) for h in root.handlers for f in h.filters):
        root.addHandler(handler)

    return handler


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance

    Args:
        name: Logger name (defaults to calling module)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


@contextmanager
def task_context(owner: str, action: str) -> Iterator[None]:
    """Bind owner and action label for everything logged inside the block"""
    owner_token = owner_context.set(owner)
    action_token = action_context.set(action)
    try:
        yield
    finally:
        action_context.reset(action_token)
        owner_context.reset(owner_token)


def clear_context():
    """Clear all logging context"""
    action_context.set(None)
    owner_context.set(None)
