"""LLM Response Services Package

This package provides:
- ResponseParser: multi-strategy JSON extraction from LLM text
- Schema validation of extracted values
- Error classification into the AIError taxonomy
- Per-model pricing for cost telemetry

Usage:
    from resilient_llm.services.llm import extract, validate, classify
"""

from resilient_llm.services.llm.response_parser import (
    ResponseParser,
    extract,
    extract_array,
    extract_from_tool_invocation,
)
from resilient_llm.services.llm.schema_validator import validate
from resilient_llm.services.llm.error_classifier import classify
from resilient_llm.services.llm.pricing import calculate_cost, MODEL_PRICING

__all__ = [
    # Extraction
    "ResponseParser",
    "extract",
    "extract_array",
    "extract_from_tool_invocation",
    # Validation
    "validate",
    # Errors
    "classify",
    # Pricing
    "calculate_cost",
    "MODEL_PRICING",
]
