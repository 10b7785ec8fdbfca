"""HTTP adapter exposing AI functions over FastAPI."""

from resilient_llm.api.server import create_app, run_server

__all__ = ["create_app", "run_server"]
