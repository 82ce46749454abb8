"""
stackutils: a shared database connection pool and a keyed rate limiter for
host applications.
"""

from stackutils.core.exceptions import (
    ConfigurationError,
    InitFailureReason,
    InitializationError,
    NotInitializedError,
    StackUtilsException,
    WorkError,
)
from stackutils.database.connection import (
    DatabaseConnectionManager,
    InitResult,
    PoolConfiguration,
    PoolState,
)
from stackutils.utils.rate_limiter import RateLimiter

__version__ = "1.0.0"

__all__ = [
    'ConfigurationError',
    'DatabaseConnectionManager',
    'InitFailureReason',
    'InitResult',
    'InitializationError',
    'NotInitializedError',
    'PoolConfiguration',
    'PoolState',
    'RateLimiter',
    'StackUtilsException',
    'WorkError',
]
