"""FastAPI adapter for orchestrated AI functions.

Provides HTTP endpoints for:
- POST/OPTIONS /functions/{name} - Invoke one AI function
- /health - Liveness plus the list of registered functions
- /metrics - Prometheus metrics in text format

Usage:
    from resilient_llm.api.server import create_app, run_server

    app = create_app({"analyze-resume": analyze_handler})
    run_server({"analyze-resume": analyze_handler}, settings)
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Mapping, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse

from resilient_llm import __version__
from resilient_llm.models.config import PipelineSettings
from resilient_llm.observability.logging import (
    bind_context,
    clear_context,
    configure_logging,
)
from resilient_llm.observability.metrics import (
    get_metrics_content_type,
    get_metrics_text,
)
from resilient_llm.orchestration.handler import (
    AIRequestHandler,
    InboundRequest,
    ResponseEnvelope,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    logger.info("server_starting", functions=sorted(app.state.handlers))
    yield
    logger.info("server_stopping")


def create_app(
    handlers: Mapping[str, AIRequestHandler],
    settings: Optional[PipelineSettings] = None,
    title: str = "Resilient LLM API",
    version: str = __version__,
) -> FastAPI:
    """Create FastAPI application routing to the given handlers.

    Args:
        handlers: Function name -> orchestrated handler
        settings: Pipeline settings; only the server section is read here
        title: API title
        version: API version

    Returns:
        Configured FastAPI application
    """
    settings = settings or PipelineSettings()
    app = FastAPI(
        title=title,
        version=version,
        description="Orchestrated LLM functions with extraction and retry",
        lifespan=lifespan,
    )
    app.state.handlers = dict(handlers)
    max_body_bytes = settings.server.max_body_bytes

    async def dispatch(name: str, request: Request) -> Response:
        handler = app.state.handlers.get(name)
        if handler is None:
            return JSONResponse(
                content={
                    "error": "NOT_FOUND",
                    "message": f"Unknown function: {name}",
                },
                status_code=status.HTTP_404_NOT_FOUND,
            )

        body = await request.body()
        if len(body) > max_body_bytes:
            return JSONResponse(
                content={
                    "error": "VALIDATION_ERROR",
                    "message": "Please send a smaller request",
                },
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            )

        clear_context()
        bind_context(http_method=request.method, http_path=request.url.path)
        try:
            envelope = await handler(
                InboundRequest(
                    method=request.method,
                    headers=dict(request.headers),
                    body=body,
                )
            )
        finally:
            clear_context()
        return to_response(envelope)

    @app.post(
        "/functions/{name}",
        response_model=None,
        summary="Invoke an AI function",
    )
    async def invoke_function(name: str, request: Request) -> Response:
        return await dispatch(name, request)

    @app.options("/functions/{name}", response_model=None, include_in_schema=False)
    async def preflight(name: str, request: Request) -> Response:
        return await dispatch(name, request)

    @app.get(
        "/health",
        response_model=None,
        summary="Liveness check",
    )
    async def health_check() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "version": version,
            "functions": sorted(app.state.handlers),
        }

    @app.get(
        "/metrics",
        response_class=PlainTextResponse,
        summary="Prometheus metrics",
        description="Export Prometheus metrics in text format",
    )
    async def prometheus_metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(
            content=get_metrics_text(),
            media_type=get_metrics_content_type(),
        )

    return app


def to_response(envelope: ResponseEnvelope) -> Response:
    """Render a transport-agnostic envelope as a Starlette response."""
    headers = {
        key: value
        for key, value in envelope.headers.items()
        if key.lower() != "content-type"
    }
    if not envelope.has_body:
        return Response(status_code=envelope.status_code, headers=headers)
    return Response(
        content=envelope.json(),
        status_code=envelope.status_code,
        headers=headers,
        media_type="application/json",
    )


def run_server(  # pragma: no cover
    handlers: Mapping[str, AIRequestHandler],
    settings: Optional[PipelineSettings] = None,
) -> None:
    """Run the HTTP adapter (blocking)."""
    import uvicorn

    settings = settings or PipelineSettings()
    configure_logging(
        level=settings.logging.level, json_output=settings.logging.json_output
    )
    app = create_app(handlers, settings)
    logger.info(
        "server_starting", host=settings.server.host, port=settings.server.port
    )
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level.lower(),
    )
