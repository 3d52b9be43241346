"""
Configuration management for watershed-metrics.

This module provides Pydantic-based configuration schemas for validating
and loading the TOML file that drives a pipeline run.

Key exports:
- PipelineConfig: Root configuration from pipeline.toml
- SettingsConfig / ServicesConfig / InputsConfig / DerivedRuleConfig: Sections
- load_config(): Load and validate a pipeline configuration
"""

from .defaults import (
    DEFAULT_CRS,
    DEFAULT_FETCH_BATCH_SIZE,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_NLDI_URL,
    DEFAULT_RESOLVE_BATCH_SIZE,
    DEFAULT_STREAMCAT_URL,
    DEFAULT_TIMEOUT,
    DEFAULT_WORK_DIR,
    ENV_NLDI_URL,
    ENV_STREAMCAT_API_KEY,
    ENV_STREAMCAT_URL,
    ENV_WORK_DIR,
)
from .schema import (
    DerivedRuleConfig,
    InputsConfig,
    PipelineConfig,
    ServicesConfig,
    SettingsConfig,
    load_config,
)

__all__ = [
    # Main models
    "PipelineConfig",
    "SettingsConfig",
    "ServicesConfig",
    "InputsConfig",
    "DerivedRuleConfig",
    # Loaders
    "load_config",
    # Defaults
    "DEFAULT_CRS",
    "DEFAULT_FETCH_BATCH_SIZE",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_NLDI_URL",
    "DEFAULT_RESOLVE_BATCH_SIZE",
    "DEFAULT_STREAMCAT_URL",
    "DEFAULT_TIMEOUT",
    "DEFAULT_WORK_DIR",
    # Environment variables
    "ENV_WORK_DIR",
    "ENV_NLDI_URL",
    "ENV_STREAMCAT_URL",
    "ENV_STREAMCAT_API_KEY",
]
