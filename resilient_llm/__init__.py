"""Resilient extraction-and-retry pipeline for LLM responses."""

__version__ = "1.0.0"
