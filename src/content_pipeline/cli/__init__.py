"""Command-line interface for content-pipeline."""

from content_pipeline.cli.main import cli, main

__all__ = ["cli", "main"]
