"""CodeRecall error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Indexing
- 4xxx: Retrieval
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002

    # Indexing (3xxx)
    WORKSPACE_NOT_FOUND = 3001
    ALREADY_INDEXING = 3002
    CANCELLED = 3003
    INIT_FAILED = 3004
    VECTOR_INDEX_FAILED = 3005

    # Retrieval (4xxx)
    QUERY_TOO_LONG = 4001
    RETRIEVE_FAILED = 4002

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


_RETRYABLE = frozenset(
    {
        ErrorCode.ALREADY_INDEXING,
        ErrorCode.VECTOR_INDEX_FAILED,
        ErrorCode.RETRIEVE_FAILED,
    }
)


def is_retryable(code: ErrorCode) -> bool:
    return code in _RETRYABLE


@dataclass(frozen=True, slots=True)
class CodeRecallError(Exception):
    """Base error with structured context for callers and CLI output."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'ALREADY_INDEXING')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(CodeRecallError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )


class IndexingError(CodeRecallError):
    """Errors surfaced by indexing and retrieval operations.

    Callers branch on ``code``: ALREADY_INDEXING is usually a no-op for the
    caller while INIT_FAILED is a blocking condition.
    """

    @classmethod
    def workspace_not_found(cls, path: str) -> "IndexingError":
        return cls(
            code=ErrorCode.WORKSPACE_NOT_FOUND,
            message=f"Workspace not found: {path}",
            details={"path": path},
        )

    @classmethod
    def already_indexing(cls, path: str) -> "IndexingError":
        return cls(
            code=ErrorCode.ALREADY_INDEXING,
            message=f"Workspace is already being indexed: {path}",
            retryable=True,
            details={"path": path},
        )

    @classmethod
    def cancelled(cls, stage: str | None = None) -> "IndexingError":
        details = {"stage": stage} if stage else {}
        return cls(
            code=ErrorCode.CANCELLED,
            message="Indexing was cancelled" + (f" during {stage}" if stage else ""),
            details=details,
        )

    @classmethod
    def init_failed(cls, component: str, reason: str) -> "IndexingError":
        return cls(
            code=ErrorCode.INIT_FAILED,
            message=f"Failed to initialize {component}: {reason}",
            details={"component": component, "reason": reason},
        )

    @classmethod
    def vector_index_failed(cls, reason: str, **details: Any) -> "IndexingError":
        return cls(
            code=ErrorCode.VECTOR_INDEX_FAILED,
            message=f"Vector index operation failed: {reason}",
            retryable=True,
            details=details,
        )

    @classmethod
    def query_too_long(cls, length: int, limit: int) -> "IndexingError":
        return cls(
            code=ErrorCode.QUERY_TOO_LONG,
            message=f"Query is {length} characters, limit is {limit}",
            details={"length": length, "limit": limit},
        )

    @classmethod
    def retrieve_failed(cls, reason: str) -> "IndexingError":
        return cls(
            code=ErrorCode.RETRIEVE_FAILED,
            message=f"Retrieval failed: {reason}",
            retryable=True,
            details={"reason": reason},
        )

    @classmethod
    def wrap(cls, exc: BaseException, code: ErrorCode) -> CodeRecallError:
        """Convert an arbitrary exception into a typed error.

        Typed errors pass through untouched. Messages that mention
        cancellation map to CANCELLED regardless of ``code``.
        """
        if isinstance(exc, CodeRecallError):
            return exc
        reason = str(exc) or type(exc).__name__
        if "cancel" in reason.lower():
            return cls.cancelled()
        return cls(
            code=code,
            message=reason,
            retryable=is_retryable(code),
            details={"exception": type(exc).__name__},
        )


class InternalError(CodeRecallError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
