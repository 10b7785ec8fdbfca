"""Exception hierarchy for the extraction-and-retry pipeline.

Every failure that crosses the handler boundary is represented as an
AIError carrying one member of the closed ErrorCode taxonomy:

- RATE_LIMIT, TIMEOUT, INVALID_RESPONSE, API_ERROR are retryable
- PAYMENT_REQUIRED, CIRCUIT_OPEN, VALIDATION_ERROR,
  AUTHENTICATION_ERROR, INTERNAL_ERROR are not

AIError is the unit of propagation between layers and is caught exactly
once, at the orchestrator boundary.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Closed set of classified failure kinds."""

    RATE_LIMIT = "RATE_LIMIT"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    TIMEOUT = "TIMEOUT"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    API_ERROR = "API_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Retryability default per code
RETRYABLE_CODES = frozenset(
    {
        ErrorCode.RATE_LIMIT,
        ErrorCode.TIMEOUT,
        ErrorCode.INVALID_RESPONSE,
        ErrorCode.API_ERROR,
    }
)

DEFAULT_STATUS_CODES = {
    ErrorCode.RATE_LIMIT: 429,
    ErrorCode.PAYMENT_REQUIRED: 402,
    ErrorCode.TIMEOUT: 408,
    ErrorCode.INVALID_RESPONSE: 502,
    ErrorCode.API_ERROR: 500,
    ErrorCode.CIRCUIT_OPEN: 503,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.AUTHENTICATION_ERROR: 401,
    ErrorCode.INTERNAL_ERROR: 500,
}

DEFAULT_USER_MESSAGES = {
    ErrorCode.RATE_LIMIT: "Too many requests. Please wait a moment and try again.",
    ErrorCode.PAYMENT_REQUIRED: (
        "AI credits are exhausted. Please contact support to restore access."
    ),
    ErrorCode.TIMEOUT: "The AI service took too long to respond. Please try again.",
    ErrorCode.INVALID_RESPONSE: (
        "The AI service returned an unexpected format. Please try again."
    ),
    ErrorCode.API_ERROR: (
        "The AI service is temporarily unavailable. Please try again shortly."
    ),
    ErrorCode.CIRCUIT_OPEN: (
        "The AI service is recovering from errors. Please try again in a few minutes."
    ),
    ErrorCode.VALIDATION_ERROR: "The request is invalid. Please check your input.",
    ErrorCode.AUTHENTICATION_ERROR: "Please log in to use this feature.",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Please try again.",
}


class AIError(Exception):
    """Classified pipeline failure.

    Attributes are fixed at construction and exposed read-only.

    Example:
        ```python
        raise AIError(
            "Content too long (max 100000 characters)",
            ErrorCode.VALIDATION_ERROR,
            user_message="Please provide shorter content",
        )
        ```
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
        user_message: Optional[str] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        code = ErrorCode(code)
        self._message = message
        self._code = code
        self._status_code = (
            status_code if status_code is not None else DEFAULT_STATUS_CODES[code]
        )
        self._retryable = retryable if retryable is not None else code in RETRYABLE_CODES
        self._user_message = user_message or DEFAULT_USER_MESSAGES[code]
        self._retry_after = retry_after

    @property
    def message(self) -> str:
        return self._message

    @property
    def code(self) -> ErrorCode:
        return self._code

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def retryable(self) -> bool:
        return self._retryable

    @property
    def user_message(self) -> str:
        return self._user_message

    @property
    def retry_after(self) -> Optional[float]:
        return self._retry_after

    def to_dict(self) -> dict[str, Any]:
        """Serializable snapshot for logging."""
        data: dict[str, Any] = {
            "message": self._message,
            "code": self._code.value,
            "status_code": self._status_code,
            "retryable": self._retryable,
            "user_message": self._user_message,
        }
        if self._retry_after is not None:
            data["retry_after"] = self._retry_after
        return data

    def __repr__(self) -> str:
        return (
            f"AIError(code={self._code.value}, status_code={self._status_code}, "
            f"retryable={self._retryable}, message={self._message!r})"
        )
