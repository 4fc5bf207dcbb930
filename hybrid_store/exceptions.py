"""Store exception hierarchy.

All custom exceptions inherit from HybridStoreError.
Each exception has an error code for structured error handling.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes for structured error handling."""

    # General errors (1xxx)
    INTERNAL_ERROR = "HDS-1000"
    CONFIGURATION_ERROR = "HDS-1001"
    VALIDATION_ERROR = "HDS-1002"
    UNSUPPORTED_OPERATION = "HDS-1003"

    # Schema errors (2xxx)
    SCHEMA_ERROR = "HDS-2000"
    INVALID_IDENTIFIER = "HDS-2001"
    INVALID_DIMENSIONS = "HDS-2002"
    SCHEMA_MISMATCH = "HDS-2003"

    # Embedding errors (3xxx)
    EMBEDDING_SERVICE_ERROR = "HDS-3000"
    EMBEDDING_DIMENSION_MISMATCH = "HDS-3001"
    EMBEDDING_COUNT_MISMATCH = "HDS-3002"

    # Storage errors (4xxx)
    STORAGE_ERROR = "HDS-4000"
    TRANSACTION_FAILED = "HDS-4001"

    # LLM errors (5xxx)
    LLM_SERVICE_ERROR = "HDS-5000"
    LLM_TIMEOUT = "HDS-5001"
    LLM_RATE_LIMIT = "HDS-5002"

    # Filter errors (6xxx)
    FILTER_ERROR = "HDS-6000"


class HybridStoreError(Exception):
    """Base exception for all store errors.

    Attributes:
        message: Human-readable error message.
        code: Structured error code.
        details: Additional error context.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
            }
        }


class ConfigurationError(HybridStoreError):
    """Configuration or environment error."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)


class ValidationError(HybridStoreError):
    """Input validation error, or an operation the store mode does not offer."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class SchemaError(HybridStoreError):
    """Malformed configuration for, or incompatibility with, the stored schema."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SCHEMA_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class EmbeddingError(HybridStoreError):
    """Embedding collaborator failure or wrong vector dimensionality."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.EMBEDDING_SERVICE_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class EmbeddingMismatchError(EmbeddingError):
    """Embedding collaborator returned a different number of vectors than texts."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.EMBEDDING_COUNT_MISMATCH, details)


class FilterError(HybridStoreError):
    """Metadata filter with an unsupported value shape."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.FILTER_ERROR, details)


class StorageError(HybridStoreError):
    """Storage engine failure. The surrounding transaction was rolled back."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.STORAGE_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class LLMError(HybridStoreError):
    """Keyword-extraction model error."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.LLM_SERVICE_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)
