"""Request ID context management for tracing one request across layers.

A ContextVar holds the current request's correlation ID so it follows
the request through awaits without being passed explicitly.

Usage:
    from resilient_llm.observability.context import request_id_context

    with request_id_context(headers.get("x-request-id")) as request_id:
        await handle(request)
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

_request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def new_request_id() -> str:
    return uuid.uuid4().hex


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set the request ID for the current context, generating one if absent."""
    if not request_id:
        request_id = new_request_id()
    _request_id_var.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


@contextmanager
def request_id_context(
    request_id: Optional[str] = None,
) -> Generator[str, None, None]:
    """Scope a request ID; the previous value is restored on exit.

    Args:
        request_id: Inbound ID (e.g. from an X-Request-ID header). A new
            one is generated when None or empty.

    Yields:
        The request ID in effect inside the block
    """
    token = _request_id_var.set(request_id or new_request_id())
    try:
        yield _request_id_var.get()  # type: ignore[misc]
    finally:
        _request_id_var.reset(token)
