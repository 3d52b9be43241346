"""
Core of the enrichment pipeline.

This module contains:
- Data model (sites, catchment links, variable specs, metric rows)
- Variable catalog validation and lookup
- Site resolution with a durable SQLite link table
- Metric fetching and merging onto the site table
- Derived metric composition
- Stage checkpoints and the pipeline orchestrator
"""

from .catalog import VariableCatalog
from .checkpoint import CheckpointStore, PipelineState, Stage
from .compose import RowView, compose, mean_of, rules_from_config, sum_of
from .exceptions import (
    CatalogUnavailable,
    InvalidVariableSet,
    PipelineCancelled,
    PipelineFailed,
    ResolutionCountMismatch,
    UnknownVariable,
    WatershedMetricsError,
)
from .fetcher import MetricFetcher, merge_metrics, metric_columns
from .link_store import LinkStore
from .models import CatchmentLink, LinkStatus, MetricRow, Scope, Site, VariableSpec
from .pipeline import Pipeline, PipelineResult
from .resolver import SiteResolver
from .sites import load_sites, sites_from_frame

__all__ = [
    # Data model
    "CatchmentLink",
    "LinkStatus",
    "MetricRow",
    "Scope",
    "Site",
    "VariableSpec",
    # Errors
    "CatalogUnavailable",
    "InvalidVariableSet",
    "PipelineCancelled",
    "PipelineFailed",
    "ResolutionCountMismatch",
    "UnknownVariable",
    "WatershedMetricsError",
    # Components
    "VariableCatalog",
    "LinkStore",
    "SiteResolver",
    "MetricFetcher",
    "merge_metrics",
    "metric_columns",
    "RowView",
    "compose",
    "mean_of",
    "sum_of",
    "rules_from_config",
    # Sites
    "load_sites",
    "sites_from_frame",
    # Orchestration
    "CheckpointStore",
    "Pipeline",
    "PipelineResult",
    "PipelineState",
    "Stage",
]
