"""CLI entry point.

Allows running the CLI as a module: python -m resilient_llm.cli
"""

from resilient_llm.cli import app

if __name__ == "__main__":
    app()
