"""Error taxonomy shared by adapters, services and the persistence layer.

AdapterError is the single error currency crossing the adapter boundary.
Vendor SDK exceptions are translated into it before leaving an adapter.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Machine-readable failure categories."""
    MISSING_API_KEY = "MISSING_API_KEY"
    INVALID_API_KEY = "INVALID_API_KEY"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_REQUEST = "INVALID_REQUEST"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    # Raised by the orchestrating service rather than by adapters
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    PROVIDER_DISABLED = "PROVIDER_DISABLED"
    ADAPTER_CREATION_ERROR = "ADAPTER_CREATION_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class FailureCategory(str, Enum):
    """User-facing buckets used when summarising failed legs."""
    CREDENTIAL = "credential"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    OTHER = "other"


_CATEGORY_BY_CODE = {
    ErrorCode.MISSING_API_KEY: FailureCategory.CREDENTIAL,
    ErrorCode.INVALID_API_KEY: FailureCategory.CREDENTIAL,
    ErrorCode.PERMISSION_DENIED: FailureCategory.CREDENTIAL,
    ErrorCode.NETWORK_ERROR: FailureCategory.NETWORK,
    ErrorCode.TIMEOUT_ERROR: FailureCategory.NETWORK,
    ErrorCode.SERVICE_UNAVAILABLE: FailureCategory.NETWORK,
    ErrorCode.RATE_LIMIT_EXCEEDED: FailureCategory.RATE_LIMIT,
}


class AdapterError(Exception):
    """Normalized provider failure.

    Args:
        message: Human readable description.
        code: Failure category.
        status_code: HTTP-like status, used only to decide retryability.
        original_error: The wrapped vendor exception, if any.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        status_code: Optional[int] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.status_code = status_code
        self.original_error = original_error

    @property
    def is_retryable(self) -> bool:
        """Client errors (4xx) are never retried; everything else may be."""
        return not (self.status_code is not None and 400 <= self.status_code < 500)

    @property
    def category(self) -> FailureCategory:
        return categorize_error(self.code)

    def __repr__(self) -> str:
        return f"AdapterError(code={self.code.value}, status_code={self.status_code}, message={self.message!r})"


def categorize_error(code: Optional[str]) -> FailureCategory:
    """Maps an error code (or its string value) to a user-facing bucket."""
    if code is None:
        return FailureCategory.OTHER
    try:
        return _CATEGORY_BY_CODE.get(ErrorCode(code), FailureCategory.OTHER)
    except ValueError:
        return FailureCategory.OTHER


class EntryNotFoundError(LookupError):
    """Raised when a prompt entry id is not present in memory."""

    def __init__(self, entry_id: str):
        super().__init__(f"Prompt entry not found: {entry_id}")
        self.entry_id = entry_id


class PersistenceError(Exception):
    """Raised when the durable history store rejects an operation."""
