"""
Unit tests for settings and exceptions
"""
import pytest
from pydantic import ValidationError

from stackutils.core.config import Settings
from stackutils.core.exceptions import (
    ConfigurationError,
    InitFailureReason,
    InitializationError,
    NotInitializedError,
    StackUtilsException,
    WorkError,
)


@pytest.mark.unit
class TestSettings:
    """Test Settings"""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("STACKUTILS_DB_POOL_TIMEOUT", raising=False)

        s = Settings(_env_file=None)

        assert s.db_pool_timeout == 30
        assert s.config_file_name == "mysql.yml"
        assert s.bootstrap_resource == "database.sql"
        assert s.async_max_workers is None

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("STACKUTILS_DB_POOL_TIMEOUT", "5")
        monkeypatch.setenv("STACKUTILS_LOG_LEVEL", "debug")
        monkeypatch.setenv("STACKUTILS_ASYNC_MAX_WORKERS", "4")

        s = Settings(_env_file=None)

        assert s.db_pool_timeout == 5
        assert s.log_level == "DEBUG"
        assert s.async_max_workers == 4

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_level="LOUD")

    def test_pool_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, db_pool_timeout=0)

    def test_async_workers_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, async_max_workers=0)


@pytest.mark.unit
class TestExceptions:
    """Test the exception hierarchy"""

    def test_hierarchy(self):
        for exc in (
            ConfigurationError("x"),
            InitializationError("x", InitFailureReason.CONNECT_FAILED),
            NotInitializedError(),
            WorkError("x"),
        ):
            assert isinstance(exc, StackUtilsException)

    def test_initialization_error_details(self):
        cause = OSError("refused")
        exc = InitializationError("cannot connect", InitFailureReason.CONNECT_FAILED, cause=cause)

        assert exc.reason is InitFailureReason.CONNECT_FAILED
        assert exc.cause is cause
        assert exc.details == {"reason": "connect_failed"}
        assert str(exc) == "cannot connect"

    def test_work_error_action(self):
        exc = WorkError("duplicate key", action="save-player")

        assert exc.action == "save-player"
        assert exc.details == {"action": "save-player"}
        assert exc.error_code == "WORK_ERROR"

    def test_configuration_error_fields(self):
        exc = ConfigurationError("missing", missing_fields=["database"], source="mysql.yml")

        assert exc.details == {"missing_fields": ["database"], "source": "mysql.yml"}
