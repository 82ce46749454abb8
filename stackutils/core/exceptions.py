"""
Custom exception classes for stackutils
"""
from enum import Enum
from typing import Optional, Dict, Any, List


class StackUtilsException(Exception):
    """Base exception for stackutils"""

    def __init__(
            self,
            message: str,
            error_code: Optional[str] = None,
            details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(StackUtilsException):
    """Raised when the connection settings are incomplete or unreadable"""

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None, source: Optional[str] = None):
        details = {}
        if missing_fields:
            details["missing_fields"] = missing_fields
        if source:
            details["source"] = source
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details=details
        )
        self.missing_fields = missing_fields or []


class InitFailureReason(str, Enum):
    """Why a pool initialization attempt failed"""
    CONFIGURATION_INCOMPLETE = "configuration_incomplete"
    CONFIG_FILE_UNAVAILABLE = "config_file_unavailable"
    CONNECT_FAILED = "connect_failed"
    BOOTSTRAP_MISSING = "bootstrap_missing"
    BOOTSTRAP_FAILED = "bootstrap_failed"


class InitializationError(StackUtilsException):
    """Raised when the pool could not be opened or the schema bootstrap failed"""

    def __init__(self, message: str, reason: InitFailureReason, cause: Optional[BaseException] = None):
        super().__init__(
            message=message,
            error_code="INITIALIZATION_ERROR",
            details={"reason": reason.value}
        )
        self.reason = reason
        self.cause = cause


class NotInitializedError(StackUtilsException):
    """Raised when the pool is used before initialize() succeeded or after shutdown()"""

    def __init__(self, state: Optional[str] = None):
        super().__init__(
            message="Database connection pool was never initialized or has been shut down",
            error_code="NOT_INITIALIZED",
            details={"state": state} if state else {}
        )


class WorkError(StackUtilsException):
    """Raised by a unit of work to report a database-level failure"""

    def __init__(self, message: str, action: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="WORK_ERROR",
            details={"action": action} if action else {}
        )
        self.action = action
