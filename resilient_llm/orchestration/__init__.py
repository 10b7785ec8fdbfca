"""Request orchestration for AI functions.

Usage:
    from resilient_llm.orchestration import AIHandlerConfig, create_ai_handler
"""

from resilient_llm.orchestration.handler import (
    AIHandlerConfig,
    AIRequestHandler,
    Authenticator,
    HandlerContext,
    InboundRequest,
    ResponseEnvelope,
    StaticTokenAuthenticator,
    create_ai_handler,
)

__all__ = [
    "AIHandlerConfig",
    "AIRequestHandler",
    "Authenticator",
    "HandlerContext",
    "InboundRequest",
    "ResponseEnvelope",
    "StaticTokenAuthenticator",
    "create_ai_handler",
]
