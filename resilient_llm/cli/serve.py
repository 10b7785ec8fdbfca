"""Serve command: run the HTTP adapter for a set of AI functions."""

import importlib
from pathlib import Path
from typing import Any, Mapping, Optional

import typer

from resilient_llm.cli.utils import handle_errors
from resilient_llm.models.config import PipelineSettings
from resilient_llm.orchestration.handler import AIRequestHandler
from resilient_llm.services.config_manager import ConfigManager


def load_handlers(
    target: str, settings: PipelineSettings
) -> Mapping[str, AIRequestHandler]:
    """Resolve ``module:attribute`` to a mapping of function handlers.

    The attribute is either the mapping itself or a factory called with
    the loaded settings.
    """
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got '{target}'")

    value: Any = getattr(importlib.import_module(module_name), attribute)
    if callable(value) and not isinstance(value, Mapping):
        value = value(settings)
    if not isinstance(value, Mapping):
        raise ValueError(f"{target} did not provide a mapping of handlers")
    return value


@handle_errors
def serve_command(
    target: str = typer.Argument(
        ..., help="module:attribute holding handlers or a handler factory"
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Pipeline settings YAML"
    ),
    host: Optional[str] = typer.Option(None, "--host", help="Override bind host"),
    port: Optional[int] = typer.Option(None, "--port", help="Override bind port"),
):
    """Serve AI functions over HTTP."""
    from resilient_llm.api.server import run_server

    settings = ConfigManager(str(config) if config else None).load_config()
    overrides = {
        key: value for key, value in (("host", host), ("port", port)) if value
    }
    if overrides:
        settings = settings.model_copy(
            update={"server": settings.server.model_copy(update=overrides)}
        )

    run_server(load_handlers(target, settings), settings)
