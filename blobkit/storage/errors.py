"""
Portable error codes and exceptions for blob storage drivers.

Every driver reports failures through the StorageError hierarchy below. The
``code`` attribute carries the portable ErrorCode; ``original`` keeps the
backend-native exception for callers that need provider-specific detail.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Portable error codes shared by all drivers."""

    OK = "ok"
    UNKNOWN = "unknown"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    INVALID_ARGUMENT = "invalid_argument"
    INTERNAL = "internal"
    UNIMPLEMENTED = "unimplemented"
    FAILED_PRECONDITION = "failed_precondition"
    PERMISSION_DENIED = "permission_denied"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    CANCELED = "canceled"
    DEADLINE_EXCEEDED = "deadline_exceeded"


class StorageError(Exception):
    """Base exception for storage operations."""

    default_code = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        status_code: int | None = None,
        original: BaseException | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status_code = status_code
        self.original = original
        self.details = details or {}


class NotFoundError(StorageError):
    """Object or container does not exist."""

    default_code = ErrorCode.NOT_FOUND


class PermissionDeniedError(StorageError):
    """Authentication or authorization failed."""

    default_code = ErrorCode.PERMISSION_DENIED


class UnimplementedError(StorageError):
    """The backend cannot honor the requested capability."""

    default_code = ErrorCode.UNIMPLEMENTED


class InvalidArgumentError(StorageError):
    """Input rejected before any backend call was made."""

    default_code = ErrorCode.INVALID_ARGUMENT


_ERRORS_BY_CODE: dict[ErrorCode, type[StorageError]] = {
    ErrorCode.NOT_FOUND: NotFoundError,
    ErrorCode.PERMISSION_DENIED: PermissionDeniedError,
    ErrorCode.UNIMPLEMENTED: UnimplementedError,
    ErrorCode.INVALID_ARGUMENT: InvalidArgumentError,
}


def storage_error_for(
    code: ErrorCode,
    message: str,
    original: BaseException | None = None,
    status_code: int | None = None,
) -> StorageError:
    """Build the StorageError subclass matching ``code``."""
    error_cls = _ERRORS_BY_CODE.get(code, StorageError)
    return error_cls(message, code=code, status_code=status_code, original=original)


__all__ = [
    "ErrorCode",
    "StorageError",
    "NotFoundError",
    "PermissionDeniedError",
    "UnimplementedError",
    "InvalidArgumentError",
    "storage_error_for",
]
