"""AI request orchestration.

Composes authentication, rate limiting, input checks, retrying the
business handler, JSON extraction and telemetry into one request
lifecycle with a uniform response envelope:

    OPTIONS -> 204
    identity -> rate limit (429) -> body size/content caps (400/413)
    -> input_validation -> handler under retry (and circuit breaker)
    -> extraction + schema -> 200 with the result

Every path ends in exactly one success envelope or one AIError-shaped
failure envelope; nothing unstructured escapes.

Example:
    ```python
    async def analyze(ctx: HandlerContext) -> HandlerResult:
        reply = await llm.complete(ctx.body["content"])
        return HandlerResult(content=reply.text, usage=reply.usage)

    handle = create_ai_handler(
        AIHandlerConfig(
            function_name="analyze-resume",
            handler=analyze,
            response_schema=[NumberRule(field="score", min=0, max=100)],
        ),
        authenticator=my_authenticator,
    )
    envelope = await handle(InboundRequest(method="POST", headers=h, body=raw))
    ```
"""

import inspect
import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from resilient_llm.models.config import DiagnosticsPolicy
from resilient_llm.models.extraction import FieldRule
from resilient_llm.models.llm import CallMetrics, HandlerResult, ModelUsage, RateLimitConfig
from resilient_llm.observability.context import request_id_context
from resilient_llm.observability.logging import CallLogger
from resilient_llm.observability.metrics import EXTRACTION_FAILURES, REQUESTS_TOTAL
from resilient_llm.services.llm.pricing import calculate_cost
from resilient_llm.services.llm.response_parser import ResponseParser
from resilient_llm.utils.circuit_breaker import CircuitBreaker
from resilient_llm.utils.exceptions import AIError, ErrorCode
from resilient_llm.utils.rate_limiter import RateLimiter
from resilient_llm.utils.retry import RetryHandler

SERVICE_IDENTITY = "service"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, x-request-id"
    ),
}

JSON_HEADERS = {**CORS_HEADERS, "Content-Type": "application/json"}


class Authenticator(Protocol):
    """Identity collaborator: maps an Authorization header to an identity."""

    async def authenticate(self, authorization: str) -> Optional[str]:
        """Return an opaque identity, or None for an invalid session."""
        ...


class StaticTokenAuthenticator:
    """Bearer-token authenticator backed by a fixed token -> identity map"""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    async def authenticate(self, authorization: str) -> Optional[str]:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            return None
        return self._tokens.get(token.strip())


@dataclass(frozen=True)
class InboundRequest:
    """Transport-agnostic request"""

    method: str = "POST"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


@dataclass(frozen=True)
class ResponseEnvelope:
    """Transport-agnostic response"""

    status_code: int
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def has_body(self) -> bool:
        """204 responses carry no body; a None body elsewhere is JSON null."""
        return self.status_code != 204

    def json(self) -> str:
        if not self.has_body:
            return ""
        return json.dumps(self.body, default=_json_default)


@dataclass
class HandlerContext:
    """What the business handler receives on every attempt"""

    identity: str
    body: dict
    logger: CallLogger
    request_id: str


Handler = Callable[[HandlerContext], Awaitable[Any]]
InputValidator = Callable[[dict], Any]


class AIHandlerConfig(BaseModel):
    """Per-function orchestration settings"""

    function_name: str = Field(..., min_length=1)
    handler: Handler
    response_schema: Optional[List[FieldRule]] = None
    require_auth: bool = True
    rate_limit: Optional[RateLimitConfig] = Field(default_factory=RateLimitConfig)
    input_validation: Optional[InputValidator] = None
    parse_response: bool = True
    use_tool_calls: bool = False
    tool_name: Optional[str] = Field(
        default=None, description="Only accept tool calls to this function"
    )
    max_content_length: int = Field(default=100_000, gt=0)
    max_body_bytes: int = Field(default=1_000_000, gt=0)
    max_retries: Optional[int] = Field(
        default=None, ge=0, le=10, description="None defers to the retry handler"
    )
    diagnostics: DiagnosticsPolicy = DiagnosticsPolicy.PRODUCTION

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)


class AIRequestHandler:
    """Callable request lifecycle for one AI function."""

    def __init__(
        self,
        config: AIHandlerConfig,
        authenticator: Optional[Authenticator] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_handler: Optional[RetryHandler] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        parser: Optional[ResponseParser] = None,
    ) -> None:
        if config.require_auth and authenticator is None:
            raise ValueError(
                f"Function '{config.function_name}' requires auth "
                "but no authenticator was provided"
            )
        self.config = config
        self.authenticator = authenticator
        self.rate_limiter = rate_limiter or RateLimiter()
        self.retry_handler = retry_handler or RetryHandler()
        self.circuit_breaker = circuit_breaker
        self.parser = parser or ResponseParser()
        self.logger = CallLogger(config.function_name)

    async def __call__(self, request: InboundRequest) -> ResponseEnvelope:
        if request.method.upper() == "OPTIONS":
            return ResponseEnvelope(status_code=204, headers=dict(CORS_HEADERS))

        start = time.perf_counter()
        with request_id_context(request.header("x-request-id")) as request_id:
            logger = self.logger.bind(request_id=request_id)
            try:
                envelope = await self._handle(request, request_id, logger, start)
            except Exception as e:
                envelope = self._error_response(e, logger, start)
            return envelope

    async def _handle(
        self,
        request: InboundRequest,
        request_id: str,
        logger: CallLogger,
        start: float,
    ) -> ResponseEnvelope:
        identity = await self._resolve_identity(request)
        logger = logger.bind(identity=identity)

        if self.config.rate_limit is not None:
            decision = await self.rate_limiter.check_all(
                identity, self.config.function_name, self.config.rate_limit
            )
            if not decision.allowed:
                return self._rate_limited_response(decision.retry_after or 60, logger)

        body = self._parse_body(request)
        await self._validate_input(body)

        context = HandlerContext(
            identity=identity, body=body, logger=logger, request_id=request_id
        )
        handler_start = time.perf_counter()
        result = await self._execute(context)
        handler_latency_ms = (time.perf_counter() - handler_start) * 1000

        usage = _usage_of(result)
        try:
            payload = self._process_result(result, logger)
        except AIError as e:
            if usage is not None:
                logger.log_ai_call(_metrics(usage, handler_latency_ms, e.code))
            raise

        latency_ms = (time.perf_counter() - start) * 1000
        logger.info("request_succeeded", latency_ms=round(latency_ms, 1))
        if usage is not None:
            logger.log_ai_call(_metrics(usage, handler_latency_ms, None))

        REQUESTS_TOTAL.labels(function=self.config.function_name, code="OK").inc()
        return ResponseEnvelope(
            status_code=200, body=payload, headers=dict(JSON_HEADERS)
        )

    async def _resolve_identity(self, request: InboundRequest) -> str:
        if not self.config.require_auth:
            return SERVICE_IDENTITY

        authorization = request.header("authorization")
        if not authorization:
            raise AIError(
                "Missing authorization header",
                ErrorCode.AUTHENTICATION_ERROR,
                user_message="Please log in to use this feature",
            )

        identity = await self.authenticator.authenticate(authorization)  # type: ignore[union-attr]
        if not identity:
            raise AIError(
                "Invalid or expired session",
                ErrorCode.AUTHENTICATION_ERROR,
                user_message="Please log in again",
            )
        return identity

    def _parse_body(self, request: InboundRequest) -> dict:
        raw = request.body
        if raw is None:
            return {}
        if isinstance(raw, Mapping):
            body: Any = dict(raw)
        else:
            if isinstance(raw, (bytes, bytearray)):
                self._check_body_size(len(raw))
                raw = bytes(raw).decode("utf-8", errors="replace")
            if not isinstance(raw, str):
                return {}
            self._check_body_size(len(raw.encode("utf-8")))
            try:
                body = json.loads(raw) if raw.strip() else {}
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}

        content = body.get("content")
        if isinstance(content, str) and len(content) > self.config.max_content_length:
            raise AIError(
                f"Content too long (max {self.config.max_content_length} characters)",
                ErrorCode.VALIDATION_ERROR,
                user_message="Please provide shorter content",
            )
        return body

    def _check_body_size(self, size: int) -> None:
        if size > self.config.max_body_bytes:
            raise AIError(
                f"Request body too large ({size} bytes, max "
                f"{self.config.max_body_bytes})",
                ErrorCode.VALIDATION_ERROR,
                status_code=413,
                user_message="Please send a smaller request",
            )

    async def _validate_input(self, body: dict) -> None:
        if self.config.input_validation is None:
            return
        try:
            outcome = self.config.input_validation(body)
            if inspect.isawaitable(outcome):
                await outcome
        except AIError:
            raise
        except ValueError as e:
            raise AIError(str(e), ErrorCode.VALIDATION_ERROR) from e

    async def _execute(self, context: HandlerContext) -> Any:
        async def attempt() -> Any:
            return await self.config.handler(context)

        def on_retry(attempt_number: int, error: AIError) -> None:
            context.logger.warn(
                "handler_retry",
                attempt=attempt_number,
                error_code=error.code.value,
                error=error.message,
            )

        async def retried() -> Any:
            return await self.retry_handler.retry(
                attempt, self.config.max_retries, on_retry
            )

        # One breaker failure per exhausted retry sequence
        if self.circuit_breaker is not None:
            return await self.circuit_breaker.call(retried)
        return await retried()

    def _process_result(self, result: Any, logger: CallLogger) -> Any:
        if not self.config.parse_response or result is None:
            return _passthrough(result)

        text = _text_payload(result, self.parser)
        has_tool_calls = self.config.use_tool_calls and _has_tool_calls(result)
        if text is None and not has_tool_calls:
            return _passthrough(result)

        if self.config.use_tool_calls:
            parsed = self.parser.extract_from_tool_invocation(
                result, self.config.tool_name, self.config.response_schema
            )
        else:
            parsed = self.parser.extract(text, self.config.response_schema)

        if not parsed.success:
            EXTRACTION_FAILURES.labels(function=self.config.function_name).inc()
            logger.error(
                "json_parsing_failed",
                parse_error=parsed.error,
                content=(text or "")[:500],
            )
            raise AIError(
                f"AI returned invalid response format: {parsed.error}",
                ErrorCode.INVALID_RESPONSE,
            )
        return parsed.data

    def _rate_limited_response(
        self, retry_after: int, logger: CallLogger
    ) -> ResponseEnvelope:
        logger.warn("rate_limit_rejected", retry_after=retry_after)
        REQUESTS_TOTAL.labels(
            function=self.config.function_name, code=ErrorCode.RATE_LIMIT.value
        ).inc()
        return ResponseEnvelope(
            status_code=429,
            body={
                "error": "Rate limit exceeded",
                "retryAfter": retry_after,
                "userMessage": f"Please wait {retry_after} seconds before trying again",
            },
            headers={**JSON_HEADERS, "Retry-After": str(retry_after)},
        )

    def _error_response(
        self, error: Exception, logger: CallLogger, start: float
    ) -> ResponseEnvelope:
        if isinstance(error, AIError):
            ai_error = error
        else:
            ai_error = AIError(
                str(error) or type(error).__name__, ErrorCode.INTERNAL_ERROR
            )

        latency_ms = (time.perf_counter() - start) * 1000
        logger.error(
            "request_failed",
            error=error,
            error_code=ai_error.code.value,
            status_code=ai_error.status_code,
            latency_ms=round(latency_ms, 1),
        )
        REQUESTS_TOTAL.labels(
            function=self.config.function_name, code=ai_error.code.value
        ).inc()

        body = {"error": ai_error.code.value, "message": ai_error.user_message}
        if self.config.diagnostics.expose_details:
            body["details"] = ai_error.message

        headers = dict(JSON_HEADERS)
        if ai_error.retry_after is not None:
            headers["Retry-After"] = str(int(ai_error.retry_after))
        return ResponseEnvelope(
            status_code=ai_error.status_code, body=body, headers=headers
        )


def create_ai_handler(
    config: AIHandlerConfig,
    *,
    authenticator: Optional[Authenticator] = None,
    rate_limiter: Optional[RateLimiter] = None,
    retry_handler: Optional[RetryHandler] = None,
    circuit_breaker: Optional[CircuitBreaker] = None,
) -> AIRequestHandler:
    """Build the request lifecycle callable for one AI function."""
    return AIRequestHandler(
        config,
        authenticator=authenticator,
        rate_limiter=rate_limiter,
        retry_handler=retry_handler,
        circuit_breaker=circuit_breaker,
    )


def _text_payload(result: Any, parser: ResponseParser) -> Optional[str]:
    if isinstance(result, str):
        return result
    if isinstance(result, HandlerResult):
        return result.content
    if isinstance(result, Mapping) and "choices" in result:
        return parser.extract_content(result)
    return None


def _has_tool_calls(result: Any) -> bool:
    if isinstance(result, HandlerResult):
        return bool(result.tool_calls)
    return isinstance(result, Mapping) and "choices" in result


def _passthrough(result: Any) -> Any:
    if isinstance(result, HandlerResult):
        return result.data
    return result


def _usage_of(result: Any) -> Optional[ModelUsage]:
    if isinstance(result, HandlerResult):
        return result.usage
    if not isinstance(result, Mapping):
        return None
    metrics = result.get("metrics")
    if isinstance(metrics, Mapping):
        return ModelUsage.from_mapping(metrics)
    usage = result.get("usage")
    if isinstance(usage, Mapping) and result.get("model"):
        return ModelUsage.from_mapping({**usage, "model": result["model"]})
    return None


def _metrics(
    usage: ModelUsage, latency_ms: float, error_code: Optional[ErrorCode]
) -> CallMetrics:
    cost = usage.cost_usd
    if cost is None:
        cost = calculate_cost(usage.model, usage.input_tokens, usage.output_tokens)
    return CallMetrics(
        model=usage.model,
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        latency_ms=latency_ms,
        cost_usd=cost,
        success=error_code is None,
        error_code=error_code.value if error_code is not None else None,
    )


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return str(value)
