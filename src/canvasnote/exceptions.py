"""Custom exceptions for canvasnote-core.

Provides a structured exception hierarchy with error codes and
machine-readable error information so callers on the other side of the
process boundary get a descriptive, serializable failure.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Lookup errors (1xxx)
    NOT_FOUND = 1001
    SOURCE_FILE_NOT_FOUND = 1002
    ASSET_NOT_FOUND = 1003

    # Validation errors (2xxx)
    INVALID_INPUT = 2001
    INVALID_ENTITY_KEY = 2002
    INVALID_ENTITY_TYPE = 2003
    INVALID_LOCATOR = 2004
    INVALID_ENCODING = 2005
    INVALID_QUERY = 2006
    PATH_TRAVERSAL_DETECTED = 2007

    # Storage availability errors (3xxx)
    STORAGE_UNAVAILABLE = 3001
    INDEX_UNAVAILABLE = 3002
    SOURCE_UNAVAILABLE = 3003

    # I/O errors (4xxx)
    IO_FAILURE = 4001
    WRITE_FAILED = 4002
    COPY_FAILED = 4003
    DELETE_FAILED = 4004
    READ_FAILED = 4005

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001


class CanvasNoteError(Exception):
    """Base exception for all canvasnote errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_INPUT,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NotFoundError(CanvasNoteError):
    """Raised when a source file or asset locator target does not exist."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        details = {}
        if path:
            details["path"] = path
        super().__init__(message, code=code, details=details)
        self.path = path


class InvalidInputError(CanvasNoteError):
    """Raised when input fails validation before any mutation happens."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.INVALID_INPUT
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class InvalidEncodingError(InvalidInputError):
    """Raised when an encoded binary payload cannot be decoded."""

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(
            message,
            field="data",
            value=filename,
            code=ErrorCode.INVALID_ENCODING,
        )
        self.filename = filename


class StorageUnavailableError(CanvasNoteError):
    """Raised when the backing index store or filesystem is unreachable.

    Never converted into an empty result: callers must see the outage.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_UNAVAILABLE,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class IOFailureError(CanvasNoteError):
    """Raised when a copy, write, read or delete fails.

    Carries the operation and path so the failure can be diagnosed, plus the
    underlying exception.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.IO_FAILURE,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            details["path"] = path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error
