"""Resilient LLM CLI Package.

Usage:
    python -m resilient_llm.cli extract response.txt --schema rules.yaml
    python -m resilient_llm.cli classify "Too many requests" --status 429
    python -m resilient_llm.cli validate-config config/pipeline.yaml
    python -m resilient_llm.cli serve myapp.functions:HANDLERS
"""

import typer

from resilient_llm.observability.logging import configure_logging
from resilient_llm.cli.classify import classify_command
from resilient_llm.cli.extract import extract_command
from resilient_llm.cli.serve import serve_command
from resilient_llm.cli.validate import validate_command

app = typer.Typer(help="Resilient LLM: extraction, retry and rate limiting")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Log JSON lines"),
):
    configure_logging(level=log_level, json_output=json_logs)


app.command(name="extract")(extract_command)
app.command(name="classify")(classify_command)
app.command(name="validate-config")(validate_command)
app.command(name="serve")(serve_command)

__all__ = [
    "app",
    "extract_command",
    "classify_command",
    "validate_command",
    "serve_command",
]
