"""Validate command for configuration files."""

from pathlib import Path

import typer

from resilient_llm.cli.utils import display_error, display_success, handle_errors
from resilient_llm.services.config_manager import ConfigManager


@handle_errors
def validate_command(
    config_path: Path = typer.Argument(..., help="Config file to validate"),
):
    """Validate configuration file syntax and semantics."""
    try:
        manager = ConfigManager(config_path=str(config_path))
        settings = manager.load_config()
    except Exception as e:
        display_error(f"Validation failed: {e}")
        raise typer.Exit(code=1)

    display_success("Configuration is valid! ✅")
    typer.echo(
        f"retry: max_retries={settings.retry.max_retries} "
        f"rate_limit: {settings.rate_limit.max_per_minute}/min "
        f"diagnostics: {settings.diagnostics.value}"  # type: ignore[union-attr]
    )
