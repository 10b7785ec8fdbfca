"""Structured logging and AI call telemetry.

Builds on structlog to provide:
- One JSON line per event (console rendering for development)
- Automatic request ID injection into all log entries
- CallLogger: leveled logging bound to one function name, plus the
  AI_CALL_COMPLETED metrics event and a timing helper

Usage:
    from resilient_llm.observability.logging import CallLogger, configure_logging

    configure_logging(level="INFO")

    call_logger = CallLogger("analyze-resume")
    call_logger.info("request_started", identity="user-1")
    call_logger.log_ai_call(metrics)
    result = await call_logger.time("llm_call", lambda: client.complete(...))
"""

import logging
import sys
import time as _time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from structlog.typing import EventDict, WrappedLogger

from resilient_llm.models.llm import CallMetrics
from resilient_llm.observability.context import get_request_id
from resilient_llm.observability.metrics import (
    AI_CALL_DURATION,
    AI_CALLS_TOTAL,
    AI_COST_USD_TOTAL,
    AI_TOKENS_TOTAL,
)

T = TypeVar("T")

AI_CALL_COMPLETED = "AI_CALL_COMPLETED"


def add_request_id_processor(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds request_id to log entries.

    If no request ID is set, uses "none".
    """
    request_id = get_request_id()
    event_dict.setdefault("request_id", request_id if request_id else "none")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON. If False, use console format.
        add_timestamp: If True, add ISO timestamp to each log entry.

    Example:
        # Production (JSON for log aggregation)
        configure_logging(level="INFO", json_output=True)

        # Development (readable console output)
        configure_logging(level="DEBUG", json_output=False)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_request_id_processor,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(
    component: Optional[str] = None,
    **initial_context: Any,
) -> Any:
    """Get a structured logger with optional component context.

    Example:
        logger = get_logger("rate_limiter", backend="disk")
        logger.info("store_opened")  # Includes component and backend
    """
    logger = structlog.get_logger()

    if component:
        logger = logger.bind(component=component)

    if initial_context:
        logger = logger.bind(**initial_context)

    return logger


def bind_context(**context: Any) -> None:
    """Bind context to all subsequent log entries in the current context."""
    structlog.contextvars.bind_contextvars(**context)


def clear_context() -> None:
    """Clear all bound context. Call at request boundaries."""
    structlog.contextvars.clear_contextvars()


class CallLogger:
    """Leveled structured logger for one AI function.

    Every entry carries ``function`` so one collector query isolates a
    single endpoint.
    """

    def __init__(self, function_name: str, **context: Any) -> None:
        self.function_name = function_name
        self._logger = get_logger("ai_function", function=function_name, **context)

    def bind(self, **context: Any) -> "CallLogger":
        """Return a child logger with extra context."""
        child = CallLogger.__new__(CallLogger)
        child.function_name = self.function_name
        child._logger = self._logger.bind(**context)
        return child

    def debug(self, message: str, **context: Any) -> None:
        self._logger.debug(message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._logger.info(message, **context)

    def warn(self, message: str, **context: Any) -> None:
        self._logger.warning(message, **context)

    warning = warn

    def error(
        self, message: str, error: Optional[BaseException] = None, **context: Any
    ) -> None:
        if error is not None:
            context.setdefault("error", str(error))
            context.setdefault("error_type", type(error).__name__)
            context.setdefault("exc_info", error)
        self._logger.error(message, **context)

    def log_ai_call(self, metrics: CallMetrics) -> None:
        """Emit one AI_CALL_COMPLETED event and update exported counters."""
        self._logger.info(
            AI_CALL_COMPLETED,
            model=metrics.model,
            input_tokens=metrics.input_tokens,
            output_tokens=metrics.output_tokens,
            total_tokens=metrics.input_tokens + metrics.output_tokens,
            latency_ms=round(metrics.latency_ms, 1),
            cost_usd=round(metrics.cost_usd, 6),
            success=metrics.success,
            error_code=metrics.error_code,
        )

        status = "success" if metrics.success else "failed"
        AI_CALLS_TOTAL.labels(function=self.function_name, status=status).inc()
        AI_TOKENS_TOTAL.labels(model=metrics.model, type="input").inc(
            metrics.input_tokens
        )
        AI_TOKENS_TOTAL.labels(model=metrics.model, type="output").inc(
            metrics.output_tokens
        )
        AI_COST_USD_TOTAL.labels(model=metrics.model).inc(metrics.cost_usd)
        AI_CALL_DURATION.labels(model=metrics.model).observe(metrics.latency_ms / 1000)

    async def time(self, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Await ``fn()`` and log its duration; failures are logged and re-raised."""
        start = _time.perf_counter()
        try:
            result = await fn()
        except Exception as e:
            self._logger.error(
                label,
                success=False,
                duration_ms=round((_time.perf_counter() - start) * 1000, 1),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        self._logger.info(
            label,
            success=True,
            duration_ms=round((_time.perf_counter() - start) * 1000, 1),
        )
        return result
