"""
Database package for stackutils.

This package provides connection pool management with:
- Connection settings validation
- One-time schema bootstrap
- Sync and async execution of units of work on pooled connections
- Pool monitoring and metrics
"""

from .connection import (
    DatabaseConnectionManager,
    InitResult,
    PoolConfiguration,
    PoolState,
    UnitOfWork,
)

__all__ = [
    'DatabaseConnectionManager',
    'InitResult',
    'PoolConfiguration',
    'PoolState',
    'UnitOfWork',
]
