"""Custom exceptions for the whatidid knowledge base.

Provides a structured exception hierarchy with error codes and
machine-readable error information so the calling layer can render
failures without parsing messages.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Lookup errors (1xxx)
    SPACE_NOT_FOUND = 1001
    PAGE_NOT_FOUND = 1002
    LINK_NOT_FOUND = 1003

    # Validation errors (2xxx)
    VALIDATION_FAILED = 2001
    INVALID_PAGE_TYPE = 2002
    INVALID_LINK_RELATION = 2003
    INVALID_SECTIONS = 2004
    CONTENT_SOURCE_CONFLICT = 2005
    APPEND_TO_STRUCTURED = 2006
    SPACE_NOT_EMPTY = 2007
    LINK_SELF_REFERENCE = 2008

    # Concurrency errors (3xxx)
    VERSION_CONFLICT = 3001

    # Storage errors (4xxx)
    CONSTRAINT_VIOLATION = 4001
    STORAGE_LOCKED = 4002
    STORAGE_FAILED = 4003
    DATABASE_CORRUPTED = 4004

    # Schema errors (5xxx)
    MIGRATION_FAILED = 5001
    SCHEMA_TOO_NEW = 5002


class KnowledgeBaseError(Exception):
    """Base exception for all knowledge base errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
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


class NotFoundError(KnowledgeBaseError):
    """Raised when a referenced space, page or link does not exist."""

    def __init__(
        self,
        kind: str,
        identifier: str,
        code: Optional[ErrorCode] = None,
        message: Optional[str] = None
    ):
        if code is None:
            code = {
                "space": ErrorCode.SPACE_NOT_FOUND,
                "page": ErrorCode.PAGE_NOT_FOUND,
                "link": ErrorCode.LINK_NOT_FOUND,
            }.get(kind, ErrorCode.PAGE_NOT_FOUND)
        super().__init__(
            message or f"{kind.capitalize()} '{identifier}' not found",
            code=code,
            details={"kind": kind, "id": identifier}
        )
        self.kind = kind
        self.identifier = identifier


class ValidationError(KnowledgeBaseError):
    """Raised when input is rejected before touching storage."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class VersionConflictError(KnowledgeBaseError):
    """Raised when an update carries a stale expected version.

    Attributes:
        page_id: The page that was being updated
        expected: Version the caller based its edit on
        actual: Version currently stored
    """

    def __init__(self, page_id: str, expected: int, actual: int):
        super().__init__(
            f"Page '{page_id}' is at version {actual}, expected {expected}",
            code=ErrorCode.VERSION_CONFLICT,
            details={"page_id": page_id, "expected": expected, "actual": actual}
        )
        self.page_id = page_id
        self.expected = expected
        self.actual = actual


class ConstraintViolationError(KnowledgeBaseError):
    """Raised when SQLite rejects a write on a uniqueness or foreign key rule."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=ErrorCode.CONSTRAINT_VIOLATION, details=details)
        self.operation = operation
        self.original_error = original_error


class StorageError(KnowledgeBaseError):
    """Raised when the database is unavailable, locked or corrupt."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class MigrationError(KnowledgeBaseError):
    """Raised when the schema cannot be brought to the current version.

    This is fatal: no other operation may run against the database.
    """

    def __init__(
        self,
        message: str,
        version: Optional[int] = None,
        code: ErrorCode = ErrorCode.MIGRATION_FAILED,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if version is not None:
            details["version"] = version
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.version = version
        self.original_error = original_error
