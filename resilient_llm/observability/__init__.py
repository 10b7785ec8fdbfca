"""Observability: request IDs, structured logging, Prometheus metrics.

Usage:
    from resilient_llm.observability import CallLogger, configure_logging

    configure_logging(level="INFO")
    call_logger = CallLogger("analyze-resume")
    call_logger.info("request_started")
"""

from resilient_llm.observability.context import (
    set_request_id,
    get_request_id,
    clear_request_id,
    request_id_context,
)
from resilient_llm.observability.logging import (
    AI_CALL_COMPLETED,
    CallLogger,
    get_logger,
    configure_logging,
    add_request_id_processor,
)
from resilient_llm.observability.metrics import (
    AI_CALLS_TOTAL,
    AI_TOKENS_TOTAL,
    AI_COST_USD_TOTAL,
    RETRY_ATTEMPTS,
    RATE_LIMIT_REJECTIONS,
    EXTRACTION_FAILURES,
    REQUESTS_TOTAL,
    CIRCUIT_STATE,
    AI_CALL_DURATION,
    get_metrics_text,
    reset_metrics,
)

__all__ = [
    # Context
    "set_request_id",
    "get_request_id",
    "clear_request_id",
    "request_id_context",
    # Logging
    "AI_CALL_COMPLETED",
    "CallLogger",
    "get_logger",
    "configure_logging",
    "add_request_id_processor",
    # Metrics
    "AI_CALLS_TOTAL",
    "AI_TOKENS_TOTAL",
    "AI_COST_USD_TOTAL",
    "RETRY_ATTEMPTS",
    "RATE_LIMIT_REJECTIONS",
    "EXTRACTION_FAILURES",
    "REQUESTS_TOTAL",
    "CIRCUIT_STATE",
    "AI_CALL_DURATION",
    "get_metrics_text",
    "reset_metrics",
]
