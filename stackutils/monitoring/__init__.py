"""
Logging setup for stackutils
"""

from .logging import setup_structured_logging, get_logger, task_context

__all__ = [
    'setup_structured_logging',
    'get_logger',
    'task_context',
]
