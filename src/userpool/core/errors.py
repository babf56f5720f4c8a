"""
Structured error types for the user pool store.

Every failure the store surfaces is a typed ``UserPoolError`` carrying a
category, a retry hint, structured context (store name, file path, username)
and the chained underlying exception. Callers mapping the store onto a network
API translate these kinds into protocol-specific responses.

Manifesto:
    - **Typed Error Hierarchy:** ``StoreNotFoundError`` and ``CorruptDataError``
      are distinct types, not message strings
    - **Surface, never repair:** corrupt files are reported, never replaced with
      the default document
    - **Misses are not errors:** a lookup that finds nothing returns ``None``
    - **Error Chaining:** the originating ``OSError``/``JSONDecodeError`` is kept
      as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                     UserPoolError                         │
        │        (category, retryable, context, cause)              │
        ├──────────────────────────────────────────────────────────┤
        │  StorageError            ValidationError    ConfigError   │
        │  (STORAGE)               (VALIDATION)       (CONFIG)      │
        │     │                                                     │
        │  StoreNotFoundError                                       │
        │  CorruptDataError                                         │
        └──────────────────────────────────────────────────────────┘

Examples:
    >>> error = CorruptDataError("Unreadable document")
    >>> error.with_context(store="local", path="/tmp/db/local.json")
    CorruptDataError('Unreadable document', category=STORAGE)
    >>> error.context.store
    'local'

Tags:
    error-handling, exception-hierarchy, error-context, storage, userpool
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    STORAGE = "STORAGE"
    PARSE = "PARSE"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured context attached to an error.

    Attributes:
        store: Name of the document store involved
        path: Filesystem path of the backing file or directory
        username: Primary key of the user record involved
        operation: Store/pool operation that failed (``set``, ``save_user``...)
        metadata: Anything else worth logging
    """

    store: str | None = None
    path: str | None = None
    username: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, dropping unset fields."""
        result = {
            k: v
            for k, v in {
                "store": self.store,
                "path": self.path,
                "username": self.username,
                "operation": self.operation,
            }.items()
            if v is not None
        }
        if self.metadata:
            result.update(self.metadata)
        return result


class UserPoolError(Exception):
    """
    Base class for all user pool store errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> UserPoolError:
        """Add context fields in place and return self for chaining."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Render the error for structured logging."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageError(UserPoolError):
    """Failure reading or writing a backing file."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


class StoreNotFoundError(StorageError):
    """The base directory is missing and cannot be created, or is not writable."""


class CorruptDataError(StorageError):
    """The backing file exists but does not hold a JSON object."""

    default_category = ErrorCategory.PARSE


# =============================================================================
# VALIDATION / CONFIG ERRORS
# =============================================================================


class ValidationError(UserPoolError):
    """A record or option violates the store's data rules."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class ConfigError(UserPoolError):
    """Invalid or missing configuration."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Whether an error is worth retrying. Store errors never are by default."""
    if isinstance(error, UserPoolError):
        return error.retryable
    return isinstance(error, (TimeoutError, ConnectionError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, UserPoolError):
        return error.category
    if isinstance(error, OSError):
        return ErrorCategory.STORAGE
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "UserPoolError",
    "StorageError",
    "StoreNotFoundError",
    "CorruptDataError",
    "ValidationError",
    "ConfigError",
    "is_retryable",
    "categorize_error",
]
