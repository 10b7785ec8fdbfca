"""Pipeline settings models.

Loaded from YAML by ConfigManager and threaded explicitly into the
orchestrator, rate limiter and retry handler.
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from resilient_llm.models.llm import CircuitBreakerConfig, RateLimitConfig, RetryConfig


class DiagnosticsPolicy(str, Enum):
    """Whether raw internal error text may reach the caller"""

    PRODUCTION = "production"
    DEVELOPMENT = "development"

    @property
    def expose_details(self) -> bool:
        return self is DiagnosticsPolicy.DEVELOPMENT


class LoggingConfig(BaseModel):
    """structlog output settings"""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_output: bool = Field(
        default=True, description="JSON lines for collectors, console otherwise"
    )


class RateLimitStoreConfig(BaseModel):
    """Backing store for rate-limit counters"""

    backend: Literal["memory", "disk"] = "memory"
    directory: str = Field(
        default=".cache/rate_limits",
        description="diskcache directory, used by the disk backend",
    )


class ServerConfig(BaseModel):
    """HTTP adapter settings"""

    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    max_body_bytes: int = Field(default=1_000_000, gt=0)


class PipelineSettings(BaseModel):
    """Top-level settings for the extraction-and-retry pipeline"""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    rate_limit_store: RateLimitStoreConfig = Field(
        default_factory=RateLimitStoreConfig
    )
    circuit_breaker: CircuitBreakerConfig = Field(
        default_factory=CircuitBreakerConfig
    )
    server: ServerConfig = Field(default_factory=ServerConfig)
    diagnostics: Optional[DiagnosticsPolicy] = Field(
        default=None, description="Falls back to RESILIENT_LLM_ENV when unset"
    )
    max_content_length: int = Field(
        default=100_000, gt=0, description="Cap on the request 'content' string"
    )

    model_config = ConfigDict(extra="forbid")
