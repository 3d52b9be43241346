"""
Typer CLI for watershed-metrics.

This module exports the main Typer application that runs the enrichment
pipeline and inspects the StreamCat catalog and checkpoint state.
"""

from .main import app

__all__ = ["app"]
