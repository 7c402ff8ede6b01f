"""Custom exceptions for consistent error handling."""
from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Error codes reported by the tenant store and evaluation service."""

    FLAG_NOT_FOUND = "FLAG_NOT_FOUND"
    SEGMENT_NOT_FOUND = "SEGMENT_NOT_FOUND"

    INVALID_FLAG_INPUT = "INVALID_FLAG_INPUT"
    INVALID_SEGMENT_INPUT = "INVALID_SEGMENT_INPUT"

    VERSION_CONFLICT = "VERSION_CONFLICT"

    GET_DATA_FAILED = "GET_DATA_FAILED"
    PUT_FLAG_FAILED = "PUT_FLAG_FAILED"
    UPDATE_FLAG_FAILED = "UPDATE_FLAG_FAILED"
    DELETE_FLAG_FAILED = "DELETE_FLAG_FAILED"
    PUT_SEGMENT_FAILED = "PUT_SEGMENT_FAILED"
    DELETE_SEGMENT_FAILED = "DELETE_SEGMENT_FAILED"


class FlagglyError(Exception):
    """Base exception for all Flaggly errors."""

    status_code: int = 500

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None,
    ):
        """
        Initialize Flaggly exception.

        Args:
            code: Error code (e.g., ErrorCode.FLAG_NOT_FOUND)
            message: Human-readable error message
            details: Optional structured details (validation issues, ids)
        """
        self.code = code
        self.message = message
        self.details = details
        super().__init__(self.message)

    @property
    def is_caller_error(self) -> bool:
        """Whether the error was caused by the request rather than storage."""
        return self.status_code < 500

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the ``{code, message, details?}`` error shape."""
        error: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.details is not None:
            error["details"] = self.details
        return error


class ValidationError(FlagglyError):
    """Raised when flag or segment input is invalid (400)."""

    status_code = 400

    def __init__(
        self,
        code: ErrorCode = ErrorCode.INVALID_FLAG_INPUT,
        message: str = "Invalid input",
        details: Optional[Any] = None,
    ):
        super().__init__(code=code, message=message, details=details)


class NotFoundError(FlagglyError):
    """Raised when a flag or segment is not found (404)."""

    status_code = 404

    def __init__(
        self,
        code: ErrorCode,
        resource_type: str = "Resource",
        resource_id: Optional[str] = None,
    ):
        message = f"{resource_type} not found"
        details = None
        if resource_id:
            message = f"{resource_type} '{resource_id}' not found"
            details = {"id": resource_id}

        super().__init__(code=code, message=message, details=details)


class VersionConflictError(FlagglyError):
    """Raised when a conditional write loses against a concurrent writer (409)."""

    status_code = 409

    def __init__(
        self,
        key: str,
        expected_version: int,
        actual_version: Optional[int] = None,
    ):
        super().__init__(
            code=ErrorCode.VERSION_CONFLICT,
            message=f"Document '{key}' changed since it was read",
            details={
                "key": key,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version


class StorageError(FlagglyError):
    """Raised when the persistence layer fails; the write outcome is unknown (500)."""

    status_code = 500

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(code=code, message=message)
