import os
from pathlib import Path
from string import Template
from typing import Any, Optional

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from resilient_llm.models.config import DiagnosticsPolicy, PipelineSettings
from resilient_llm.orchestration.handler import (
    AIHandlerConfig,
    AIRequestHandler,
    Authenticator,
    Handler,
    create_ai_handler,
)
from resilient_llm.utils.circuit_breaker import CircuitBreaker
from resilient_llm.utils.rate_limiter import (
    CounterStore,
    DiskCounterStore,
    InMemoryCounterStore,
    RateLimiter,
)
from resilient_llm.utils.retry import RetryHandler

logger = structlog.get_logger()

ENV_VAR = "RESILIENT_LLM_ENV"


class ConfigValidationError(Exception):
    """Configuration validation failed"""

    pass


class ConfigManager:
    """Loads pipeline settings and builds the collaborators they describe"""

    def __init__(self, config_path: Optional[str] = "config/pipeline.yaml"):
        self.config_path = Path(config_path) if config_path else None
        self.env_loaded = False
        self._config: Optional[PipelineSettings] = None

    def load_config(self) -> PipelineSettings:
        """Load and validate configuration"""
        if self._config:
            return self._config

        # 1. Load environment
        if not self.env_loaded:
            load_dotenv()
            self.env_loaded = True

        # 2. No file means defaults
        if self.config_path is None:
            self._config = self._resolve_diagnostics(PipelineSettings())
            return self._config

        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        # 3. Read YAML
        try:
            raw_content = self.config_path.read_text()
        except OSError as e:
            raise ConfigValidationError(f"Failed to read config file: {e}") from e

        # 4. Substitute ${VAR} references
        try:
            substituted = Template(raw_content).safe_substitute(os.environ)
            config_data: Any = yaml.safe_load(substituted) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(
                f"Failed to parse YAML or substitute variables: {e}"
            ) from e

        if not isinstance(config_data, dict):
            raise ConfigValidationError(
                "Invalid configuration: top level must be a mapping"
            )

        # 5. Validate with Pydantic
        try:
            settings = PipelineSettings(**config_data)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid configuration: {e}") from e

        self._config = self._resolve_diagnostics(settings)
        logger.info(
            "config_loaded",
            path=str(self.config_path),
            diagnostics=self._config.diagnostics.value,  # type: ignore[union-attr]
            rate_limit_backend=self._config.rate_limit_store.backend,
        )
        return self._config

    @staticmethod
    def defaults() -> PipelineSettings:
        """Settings with every default and diagnostics resolved from the env"""
        return ConfigManager._resolve_diagnostics(PipelineSettings())

    @staticmethod
    def _resolve_diagnostics(settings: PipelineSettings) -> PipelineSettings:
        if settings.diagnostics is not None:
            return settings
        env = os.environ.get(ENV_VAR, "").strip().lower()
        policy = (
            DiagnosticsPolicy.DEVELOPMENT
            if env == DiagnosticsPolicy.DEVELOPMENT.value
            else DiagnosticsPolicy.PRODUCTION
        )
        return settings.model_copy(update={"diagnostics": policy})


def build_counter_store(settings: PipelineSettings) -> CounterStore:
    store_config = settings.rate_limit_store
    if store_config.backend == "disk":
        return DiskCounterStore(store_config.directory)
    return InMemoryCounterStore()


def build_rate_limiter(settings: PipelineSettings) -> RateLimiter:
    return RateLimiter(store=build_counter_store(settings))


def build_retry_handler(settings: PipelineSettings) -> RetryHandler:
    return RetryHandler(config=settings.retry)


def build_circuit_breaker(
    name: str, settings: PipelineSettings
) -> Optional[CircuitBreaker]:
    """Circuit breaker for one function, or None when disabled"""
    if not settings.circuit_breaker.enabled:
        return None
    return CircuitBreaker(name, config=settings.circuit_breaker)


def build_handler_config(
    function_name: str,
    handler: Handler,
    settings: PipelineSettings,
    **overrides: Any,
) -> AIHandlerConfig:
    """Per-function config seeded from settings; keyword overrides win.

    Diagnostics, rate limits and the content and body caps come from
    ``settings`` unless overridden. The retry budget is left to the retry
    handler built from the same settings.
    """
    if settings.diagnostics is None:
        settings = ConfigManager._resolve_diagnostics(settings)
    values: dict = {
        "function_name": function_name,
        "handler": handler,
        "rate_limit": settings.rate_limit,
        "diagnostics": settings.diagnostics,
        "max_content_length": settings.max_content_length,
        "max_body_bytes": settings.server.max_body_bytes,
    }
    values.update(overrides)
    return AIHandlerConfig(**values)


def build_ai_handler(
    function_name: str,
    handler: Handler,
    settings: PipelineSettings,
    authenticator: Optional[Authenticator] = None,
    **overrides: Any,
) -> AIRequestHandler:
    """Orchestrated handler wired with every collaborator settings describe"""
    return create_ai_handler(
        build_handler_config(function_name, handler, settings, **overrides),
        authenticator=authenticator,
        rate_limiter=build_rate_limiter(settings),
        retry_handler=build_retry_handler(settings),
        circuit_breaker=build_circuit_breaker(function_name, settings),
    )
