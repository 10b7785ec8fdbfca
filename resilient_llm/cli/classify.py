"""Classify command: show how a failure maps onto the error taxonomy."""

import json
from typing import Optional

import typer

from resilient_llm.cli.utils import handle_errors
from resilient_llm.services.llm.error_classifier import classify


@handle_errors
def classify_command(
    message: str = typer.Argument(..., help="Error message text"),
    status: Optional[int] = typer.Option(
        None, "--status", help="HTTP status returned with the error"
    ),
):
    """Classify an error message (and optional status) into an AIError."""
    raw = {"message": message}
    if status is not None:
        raw["status_code"] = status  # type: ignore[assignment]

    error = classify(raw)
    typer.echo(json.dumps(error.to_dict(), indent=2))
