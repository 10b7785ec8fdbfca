"""Shared CLI utilities."""

import functools
import sys
from pathlib import Path
from typing import Any, Callable, List, Optional, TypeVar

import structlog
import typer
import yaml

from resilient_llm.models.extraction import FieldRule, parse_schema

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable)


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling.

    Catches exceptions and displays user-friendly error messages.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except Exception as e:
            logger.exception("command_failed")
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

    return wrapper  # type: ignore[return-value]


def read_input(path: Path) -> str:
    """Read a file, or stdin when the path is ``-``."""
    if str(path) == "-":
        return sys.stdin.read()
    return path.read_text(encoding="utf-8")


def load_schema(path: Optional[Path]) -> Optional[List[FieldRule]]:
    """Load field rules from YAML.

    The file holds either a list of rule records or a mapping with a
    ``fields`` list.
    """
    if path is None:
        return None
    data: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("fields")
    if not isinstance(data, list):
        raise ValueError(f"Schema file {path} must contain a list of field rules")
    return parse_schema(data)


def display_success(message: str) -> None:
    typer.secho(message, fg=typer.colors.GREEN)


def display_error(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
