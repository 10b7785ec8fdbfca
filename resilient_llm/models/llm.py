"""LLM call data models: resilience configuration and telemetry.

This module defines the data structures for:
- Retry, rate limit and circuit breaker configuration
- Usage numbers reported by the LLM collaborator
- What a business handler returns to the orchestrator
- The per-call metrics record emitted to the log sink
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RetryConfig(BaseModel):
    """Configuration for retry logic with exponential backoff

    Controls retry behavior for transient failures:
    - Number of retries after the initial attempt
    - Delay calculation parameters
    - Jitter for request spreading
    """

    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the initial attempt (1 + N invocations)",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        gt=0.0,
        le=60.0,
        description="Base delay for exponential backoff",
    )
    max_delay_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Maximum delay cap",
    )
    jitter_factor: float = Field(
        default=0.25,
        ge=0.0,
        le=0.5,
        description="Symmetric jitter as a fraction of the delay",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "max_retries": 3,
                "base_delay_seconds": 1.0,
                "max_delay_seconds": 10.0,
                "jitter_factor": 0.25,
            }
        }
    )


class RateLimitConfig(BaseModel):
    """Per-identity, per-operation call ceilings"""

    max_per_minute: int = Field(default=10, ge=1, le=10000)
    max_per_hour: Optional[int] = Field(default=100, ge=1, le=1000000)

    model_config = ConfigDict(
        json_schema_extra={"example": {"max_per_minute": 10, "max_per_hour": 100}}
    )


class CircuitBreakerConfig(BaseModel):
    """Configuration for circuit breaker pattern

    - CLOSED: Normal operation, requests allowed
    - OPEN: After failure threshold, requests blocked
    - HALF_OPEN: After cooldown, testing with limited requests
    """

    enabled: bool = Field(
        default=False, description="Whether circuit breaker is enabled"
    )
    failure_threshold: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Consecutive failures to open circuit",
    )
    success_threshold: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Consecutive successes to close from half-open",
    )
    cooldown_seconds: float = Field(
        default=300.0,
        gt=0.0,
        le=3600.0,
        description="Seconds before transitioning from OPEN to HALF_OPEN",
    )


class ModelUsage(BaseModel):
    """Token usage reported by the LLM collaborator for one call"""

    model: str = Field(..., min_length=1)
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cost_usd: Optional[float] = Field(
        default=None, ge=0.0, description="Computed from pricing when absent"
    )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> Optional["ModelUsage"]:
        """Build from either ``metrics``-style or ``usage``-style records.

        Recognizes ``input_tokens``/``output_tokens`` and the chat-completion
        ``prompt_tokens``/``completion_tokens`` spelling.
        """
        model = data.get("model")
        if not model:
            return None
        return cls(
            model=model,
            input_tokens=data.get("input_tokens", data.get("prompt_tokens", 0)) or 0,
            output_tokens=data.get("output_tokens", data.get("completion_tokens", 0))
            or 0,
            cost_usd=data.get("cost_usd"),
        )


class HandlerResult(BaseModel):
    """What a business handler hands back to the orchestrator.

    ``content`` is raw LLM text to extract from, ``tool_calls`` is a
    structured function-call payload, ``data`` is an already-structured
    result that bypasses extraction.
    """

    content: Optional[str] = None
    tool_calls: Optional[list[dict[str, Any]]] = None
    usage: Optional[ModelUsage] = None
    data: Any = None

    model_config = ConfigDict(frozen=True)


class CallMetrics(BaseModel):
    """Write-once telemetry record for one completed LLM call"""

    model: str
    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0)
    latency_ms: float = Field(ge=0.0)
    cost_usd: float = Field(ge=0.0)
    success: bool
    error_code: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_error_code(self) -> "CallMetrics":
        if self.success and self.error_code is not None:
            raise ValueError("Successful call cannot carry an error_code")
        return self
