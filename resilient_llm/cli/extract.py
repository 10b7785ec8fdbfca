"""Extract command: pull JSON out of raw LLM output."""

import json
from pathlib import Path
from typing import Optional

import typer

from resilient_llm.cli.utils import display_error, handle_errors, load_schema, read_input
from resilient_llm.services.llm.response_parser import ResponseParser


@handle_errors
def extract_command(
    file: Path = typer.Argument(..., help="File with raw LLM output, or - for stdin"),
    schema: Optional[Path] = typer.Option(
        None, "--schema", "-s", help="YAML file with field rules"
    ),
    array: bool = typer.Option(False, "--array", help="Expect a JSON array"),
):
    """Extract JSON from LLM text and print it."""
    rules = load_schema(schema)
    text = read_input(file)

    parser = ResponseParser()
    result = parser.extract_array(text, rules) if array else parser.extract(text, rules)

    if not result.success:
        display_error(f"Extraction failed: {result.error}")
        raise typer.Exit(code=1)

    typer.echo(json.dumps(result.data, indent=2, ensure_ascii=False))
