"""Typed failures raised by the draft repository and its storage.

Every error carries an :class:`ErrorCode` and a ``details`` mapping so
callers can branch on the code and log or serialize the context.
"""
from enum import Enum
from typing import Any, Dict, Optional, Sequence


class ErrorCode(Enum):
    """Stable numeric codes, grouped by layer."""

    # Repository (1xxx)
    REPOSITORY_NOT_INITIALIZED = 1001
    DRAFT_NOT_FOUND = 1002

    # Storage (4xxx)
    STORAGE_IO_FAILED = 4001
    STORAGE_INVALID_KEY = 4002
    STORAGE_UNEXPECTED_FORMAT = 4003
    DOCUMENT_UNAVAILABLE = 4004

    # Migration (5xxx)
    MIGRATION_FAILED = 5001

    # Configuration (6xxx)
    CONFIG_INVALID = 6001

    # Arguments (7xxx)
    VALIDATION_FAILED = 7001


def _clip(value: Any, limit: int) -> Optional[str]:
    return None if value is None else str(value)[:limit]


class DashTextError(Exception):
    """Base class for every error raised by this package.

    Subclasses set ``code``; ``details`` drops entries whose value is None.
    """

    code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = {k: v for k, v in (details or {}).items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": dict(self.details),
        }

    def __str__(self) -> str:
        text = f"[{self.code.name}] {self.message}"
        if self.details:
            text += " (" + ", ".join(f"{k}={v}" for k, v in self.details.items()) + ")"
        return text


class NotInitializedError(DashTextError):
    """The repository was used before ``initialize()`` completed."""

    code = ErrorCode.REPOSITORY_NOT_INITIALIZED

    def __init__(self, operation: Optional[str] = None):
        super().__init__(
            "Draft repository is not initialized. Call initialize() first.",
            details={"operation": operation},
        )
        self.operation = operation


class DraftNotFoundError(DashTextError):
    """No draft is known under the UUID."""

    code = ErrorCode.DRAFT_NOT_FOUND

    def __init__(self, uuid: str, message: Optional[str] = None):
        super().__init__(message or f"Draft '{uuid}' not found", details={"uuid": uuid})
        self.uuid = uuid


class ValidationError(DashTextError):
    """An argument is out of range or malformed."""

    code = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message, details={"field": field, "value": _clip(value, 100)})
        self.field = field
        self.value = value


class StorageError(DashTextError):
    """Base class for chunk storage and database failures."""

    code = ErrorCode.STORAGE_IO_FAILED

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        original_error: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message,
            code=code,
            details={
                **(details or {}),
                "operation": operation,
                "original_error": _clip(original_error, 200),
            },
        )
        self.operation = operation
        self.original_error = original_error


class StorageIOError(StorageError):
    """The database rejected a query or statement."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        sql: Optional[str] = None,
        original_error: Optional[BaseException] = None
    ):
        # Whitespace collapsed so multi-line statements log on one line
        flat_sql = " ".join(sql.split())[:120] if sql else None
        super().__init__(
            message,
            operation=operation,
            original_error=original_error,
            details={"sql": flat_sql},
        )
        self.sql = sql


class InvalidKeyError(StorageError):
    """A storage key does not address a single chunk."""

    code = ErrorCode.STORAGE_INVALID_KEY

    def __init__(self, key: Sequence[str], operation: Optional[str] = None):
        self.key = tuple(key)
        super().__init__(
            f"Invalid storage key: {list(self.key)!r}",
            operation=operation,
            details={"key": list(self.key)},
        )


class UnexpectedFormatError(StorageError):
    """A driver returned a BLOB in no recognized representation."""

    code = ErrorCode.STORAGE_UNEXPECTED_FORMAT

    def __init__(self, value: Any, operation: Optional[str] = None):
        self.type_name = type(value).__name__
        super().__init__(
            f"Unexpected bytes format: {self.type_name}",
            operation=operation,
            details={"type_name": self.type_name},
        )


class DocumentUnavailableError(StorageError):
    """A document id has no stored chunks to load."""

    code = ErrorCode.DOCUMENT_UNAVAILABLE

    def __init__(self, doc_id: str):
        self.doc_id = doc_id
        super().__init__(
            f"Document '{doc_id}' has no stored chunks",
            operation="find",
            details={"doc_id": doc_id},
        )


class MigrationError(DashTextError):
    """A legacy row could not be migrated; the run stopped there.

    Attributes:
        legacy_uuid: UUID of the legacy row that failed
        total_count: Legacy rows scheduled for migration
        migrated_count: Rows migrated before the failure
        original_error: The underlying exception
    """

    code = ErrorCode.MIGRATION_FAILED

    def __init__(
        self,
        message: str,
        legacy_uuid: Optional[str] = None,
        total_count: int = 0,
        migrated_count: int = 0,
        original_error: Optional[BaseException] = None
    ):
        if migrated_count > total_count:
            raise ValueError("migrated_count cannot exceed total_count")

        super().__init__(message, details={
            "total_count": total_count,
            "migrated_count": migrated_count,
            "legacy_uuid": legacy_uuid,
            "original_error": _clip(original_error, 200),
        })
        self.legacy_uuid = legacy_uuid
        self.total_count = total_count
        self.migrated_count = migrated_count
        self.original_error = original_error


class ConfigurationError(DashTextError):
    """A configuration value or command line override is invalid."""

    code = ErrorCode.CONFIG_INVALID

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message, details={"config_key": config_key})
        self.config_key = config_key
