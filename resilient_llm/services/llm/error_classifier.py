"""Error Classifier Module

Maps any raw failure (exception, HTTP status, message text) onto the
closed AIError taxonomy. Checks run in priority order:

1. rate limit          -> RATE_LIMIT (retryable, retry_after 60s default)
2. payment / credits   -> PAYMENT_REQUIRED (not retryable)
3. timeout / abort     -> TIMEOUT (retryable, short delay)
4. JSON / parse        -> INVALID_RESPONSE (retryable)
5. auth rejected       -> AUTHENTICATION_ERROR (not retryable)
6. 5xx / server error  -> API_ERROR (retryable)
7. anything else       -> API_ERROR (retryable)

Unknown failures default to retryable so a transient glitch is retried
rather than failing the request once.
"""

import asyncio
import json
from typing import Any, Mapping, Optional

from resilient_llm.utils.exceptions import AIError, ErrorCode

DEFAULT_RATE_LIMIT_RETRY_AFTER = 60.0
DEFAULT_TIMEOUT_RETRY_AFTER = 5.0

_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "ratelimit", "too many requests")
_PAYMENT_MARKERS = (
    "payment",
    "credits",
    "insufficient_quota",
    "insufficient quota",
    "quota exceeded",
    "billing",
)
_TIMEOUT_MARKERS = ("timeout", "timed out", "abort", "deadline exceeded")
_PARSE_MARKERS = ("json", "parse", "unexpected token", "unexpected end of")
_AUTH_MARKERS = ("unauthorized", "invalid api key", "authentication", "forbidden")
_SERVER_MARKERS = (
    "server error",
    "internal error",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "overloaded",
)


def classify(raw_error: Any) -> AIError:
    """Classify a raw failure into an AIError.

    Pure: the input is inspected, never modified. AIError instances pass
    through unchanged.

    Args:
        raw_error: Exception, message string, or any object with a
            status-like attribute

    Returns:
        The classified AIError
    """
    if isinstance(raw_error, AIError):
        return raw_error

    message = _message_of(raw_error)
    lowered = message.lower()
    status = extract_status(raw_error)

    if status == 429 or _contains(lowered, _RATE_LIMIT_MARKERS):
        retry_after = _retry_after_of(raw_error) or DEFAULT_RATE_LIMIT_RETRY_AFTER
        return AIError(
            message,
            ErrorCode.RATE_LIMIT,
            status_code=429,
            retryable=True,
            user_message=(
                f"Please wait {int(retry_after)} seconds before trying again"
            ),
            retry_after=retry_after,
        )

    if status == 402 or _contains(lowered, _PAYMENT_MARKERS):
        return AIError(message, ErrorCode.PAYMENT_REQUIRED, status_code=402)

    if (
        isinstance(raw_error, (TimeoutError, asyncio.TimeoutError))
        or status in (408, 504)
        or _contains(lowered, _TIMEOUT_MARKERS)
    ):
        return AIError(
            message or "Request timed out",
            ErrorCode.TIMEOUT,
            status_code=408,
            retry_after=DEFAULT_TIMEOUT_RETRY_AFTER,
        )

    if isinstance(raw_error, json.JSONDecodeError) or _contains(lowered, _PARSE_MARKERS):
        return AIError(message, ErrorCode.INVALID_RESPONSE, status_code=502)

    if status in (401, 403) or _contains(lowered, _AUTH_MARKERS):
        return AIError(message, ErrorCode.AUTHENTICATION_ERROR, status_code=401)

    if (status is not None and 500 <= status < 600) or _contains(
        lowered, _SERVER_MARKERS
    ):
        return AIError(
            message,
            ErrorCode.API_ERROR,
            status_code=status if status is not None else 500,
        )

    return AIError(message or type(raw_error).__name__, ErrorCode.API_ERROR)


def extract_status(raw_error: Any) -> Optional[int]:
    """Find an HTTP-like status code on an error object, if any."""
    candidates = [
        getattr(raw_error, "status_code", None),
        getattr(raw_error, "status", None),
        getattr(raw_error, "code", None),
    ]
    response = getattr(raw_error, "response", None)
    if response is not None:
        candidates.append(getattr(response, "status_code", None))
        candidates.append(getattr(response, "status", None))
    if isinstance(raw_error, Mapping):
        candidates.extend(raw_error.get(k) for k in ("status_code", "status", "code"))

    for value in candidates:
        if isinstance(value, bool):
            continue
        if isinstance(value, int) and 100 <= value < 600:
            return value
        if isinstance(value, str) and value.isdigit() and 100 <= int(value) < 600:
            return int(value)
    return None


def _message_of(raw_error: Any) -> str:
    if isinstance(raw_error, str):
        return raw_error
    if isinstance(raw_error, Mapping):
        for key in ("message", "error", "detail"):
            if isinstance(raw_error.get(key), str):
                return raw_error[key]
        return str(dict(raw_error))
    if raw_error is None:
        return ""
    return str(raw_error)


def _retry_after_of(raw_error: Any) -> Optional[float]:
    value = getattr(raw_error, "retry_after", None)
    if value is None:
        headers = getattr(getattr(raw_error, "response", None), "headers", None)
        if headers is not None:
            value = headers.get("Retry-After") or headers.get("retry-after")
    try:
        seconds = float(value) if value is not None else None
    except (TypeError, ValueError):
        return None
    return seconds if seconds and seconds > 0 else None


def _contains(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)
