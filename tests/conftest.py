"""
Shared pytest fixtures for the stackutils test suite
"""
import logging
from typing import Generator

import pytest
import structlog

from stackutils.database.connection import DatabaseConnectionManager, PoolConfiguration
from stackutils.monitoring.logging import ActionContextFilter, clear_context


TEST_BOOTSTRAP_SQL = """
-- schema used by the tests
CREATE TABLE IF NOT EXISTS visits (
    id INTEGER PRIMARY KEY,
    name VARCHAR(64) NOT NULL
);
CREATE TABLE IF NOT EXISTS audit (
    id INTEGER PRIMARY KEY,
    action VARCHAR(64) NOT NULL
);
"""


class FakeClock:
    """Manually advanced clock returning epoch milliseconds"""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def advance(self, ms: int):
        self.now += ms

    def __call__(self) -> int:
        return self.now


# Database Setup
@pytest.fixture
def sqlite_config(tmp_path) -> PoolConfiguration:
    """Complete configuration pointing at a temporary SQLite file"""
    return PoolConfiguration(
        driver="sqlite",
        database=str(tmp_path / "test.db"),
        username="test",
        password="test",
        max_pool_size=3,
        pool_timeout=2,
    )


@pytest.fixture
def bootstrap_sql() -> str:
    return TEST_BOOTSTRAP_SQL


@pytest.fixture
def manager(bootstrap_sql) -> Generator[DatabaseConnectionManager, None, None]:
    """Connection manager with the test schema, shut down after the test"""
    connection_manager = DatabaseConnectionManager("TestPlugin", bootstrap_script=bootstrap_sql)
    yield connection_manager
    connection_manager.shutdown()


@pytest.fixture
def ready_manager(manager, sqlite_config) -> DatabaseConnectionManager:
    """Connection manager that has been initialized successfully"""
    result = manager.initialize(sqlite_config)
    assert result, result.error
    return manager


# Rate Limiter Setup
@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# Logging Cleanup
@pytest.fixture(autouse=True)
def reset_logging():
    """Undo logging configuration done by a test"""
    root = logging.getLogger()
    original_level = root.level
    original_handlers = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in original_handlers and any(isinstance(f, ActionContextFilter) for f in handler.filters):
            root.removeHandler(handler)
    root.setLevel(original_level)
    structlog.reset_defaults()
    clear_context()
