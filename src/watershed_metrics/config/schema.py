"""
Pydantic models for watershed-metrics configuration files.

This module defines the configuration schema for the enrichment pipeline using
Pydantic v2. It validates TOML configuration files and provides type-safe
access to configuration values.

The configuration hierarchy:
- PipelineConfig (pipeline.toml): Root configuration
- SettingsConfig: Work directory, CRS, scope, batching and retry tuning
- ServicesConfig: Remote endpoints and the optional StreamCat API key
- InputsConfig: Site table location/columns and requested variables
- DerivedRuleConfig: One composite column built from fetched columns
"""

import logging
import os
import re
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .defaults import (
    DEFAULT_BASE_DELAY,
    DEFAULT_COLUMN_NAMING,
    DEFAULT_CRS,
    DEFAULT_FETCH_BATCH_SIZE,
    DEFAULT_ID_COLUMN,
    DEFAULT_LAT_COLUMN,
    DEFAULT_LON_COLUMN,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_DELAY,
    DEFAULT_NLDI_URL,
    DEFAULT_RESOLVE_BATCH_SIZE,
    DEFAULT_SCOPE,
    DEFAULT_STREAMCAT_URL,
    DEFAULT_TIMEOUT,
    DEFAULT_WORK_DIR,
    ENV_NLDI_URL,
    ENV_STREAMCAT_API_KEY,
    ENV_STREAMCAT_URL,
    ENV_WORK_DIR,
)

logger = logging.getLogger(__name__)


class SettingsConfig(BaseModel):
    """
    Global settings for a pipeline run.

    Controls where checkpoints are written, which aggregation scope is
    fetched, and how hard the pipeline tries against the remote services.
    """

    work_dir: str = Field(
        default_factory=lambda: os.getenv(ENV_WORK_DIR, DEFAULT_WORK_DIR),
        description="Directory for the link table, checkpoints and outputs",
    )
    crs: str = Field(default=DEFAULT_CRS, description="CRS of the site coordinates (e.g. EPSG:4326)")
    scope: Literal["catchment", "watershed"] = Field(default=DEFAULT_SCOPE, description="Aggregation scope")
    column_naming: Literal["upper", "snake"] = Field(
        default=DEFAULT_COLUMN_NAMING, description="Naming convention for metric columns"
    )
    resolve_batch_size: int = Field(default=DEFAULT_RESOLVE_BATCH_SIZE, ge=1, description="Sites per NLDI batch")
    fetch_batch_size: int | None = Field(
        default=DEFAULT_FETCH_BATCH_SIZE, description="COMIDs per StreamCat request (None = no chunking)"
    )
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1, description="Attempts per remote call")
    base_delay: float = Field(default=DEFAULT_BASE_DELAY, ge=0, description="First backoff delay in seconds")
    max_delay: float = Field(default=DEFAULT_MAX_DELAY, ge=0, description="Upper bound on a backoff delay")
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0, description="Per-call timeout in seconds")
    fail_on_unresolved: bool = Field(default=False, description="Fail the run if any site stays unresolved")
    fail_on_missing_metrics: bool = Field(
        default=False, description="Fail the run if any COMID chunk exhausts its retries"
    )
    write_geopackage: bool = Field(default=False, description="Also write enriched.gpkg with point geometry")

    @field_validator("work_dir")
    @classmethod
    def validate_work_dir(cls, v: str) -> str:
        """Validate work directory path is not empty."""
        if not v or not v.strip():
            raise ValueError("work_dir cannot be empty")
        return v.strip()

    @field_validator("fetch_batch_size")
    @classmethod
    def validate_fetch_batch_size(cls, v: int | None) -> int | None:
        """Ensure fetch_batch_size is positive if provided."""
        if v is not None and v <= 0:
            raise ValueError(f"fetch_batch_size must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def validate_delays(self) -> "SettingsConfig":
        """Ensure the backoff cap is not below the first delay."""
        if self.max_delay < self.base_delay:
            raise ValueError(f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})")
        return self


class ServicesConfig(BaseModel):
    """Remote service endpoints."""

    nldi_url: str = Field(default_factory=lambda: os.getenv(ENV_NLDI_URL, DEFAULT_NLDI_URL))
    streamcat_url: str = Field(default_factory=lambda: os.getenv(ENV_STREAMCAT_URL, DEFAULT_STREAMCAT_URL))
    api_key: str | None = Field(
        default_factory=lambda: os.getenv(ENV_STREAMCAT_API_KEY),
        description="Optional StreamCat API key (defaults to STREAMCAT_API_KEY)",
    )

    @field_validator("nldi_url", "streamcat_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        v = v.strip()
        if not re.match(r"^https?://", v):
            raise ValueError(f"Service URL must start with http:// or https://, got '{v}'")
        return v.rstrip("/")


class InputsConfig(BaseModel):
    """
    Pipeline inputs: where the sites live and which variables to fetch.

    Variable names are StreamCat short names without the scope suffix
    (e.g. "pctdecid2019").
    """

    sites: str = Field(..., description="Path to the site table (CSV, GeoPackage, Shapefile or GeoJSON)")
    id_column: str = Field(default=DEFAULT_ID_COLUMN)
    lon_column: str = Field(default=DEFAULT_LON_COLUMN)
    lat_column: str = Field(default=DEFAULT_LAT_COLUMN)
    variables: list[str] = Field(..., description="Requested StreamCat variable short names")

    @field_validator("sites")
    @classmethod
    def validate_sites_path(cls, v: str) -> str:
        """Ensure sites path is not empty."""
        if not v or not v.strip():
            raise ValueError("Sites path cannot be empty")
        return v.strip()

    @field_validator("variables")
    @classmethod
    def validate_variables(cls, v: list[str]) -> list[str]:
        """Strip names, drop blanks and duplicates, and require at least one."""
        cleaned: list[str] = []
        for name in v:
            name = name.strip()
            if name and name not in cleaned:
                cleaned.append(name)
        if not cleaned:
            raise ValueError("At least one variable must be requested")
        return cleaned


class DerivedRuleConfig(BaseModel):
    """A derived column computed from already-fetched columns."""

    op: Literal["sum", "mean"] = Field(default="sum")
    columns: list[str] = Field(..., min_length=1, description="Source column names")


class PipelineConfig(BaseModel):
    """
    Root configuration for the enrichment pipeline.

    This is the model loaded from pipeline.toml.
    """

    settings: SettingsConfig = Field(default_factory=SettingsConfig)
    services: ServicesConfig = Field(default_factory=ServicesConfig)
    inputs: InputsConfig
    derived: dict[str, DerivedRuleConfig] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_derived_names(self) -> "PipelineConfig":
        """Ensure derived columns do not shadow the site columns."""
        reserved = {"site_id", "longitude", "latitude", "comid", "status"}
        clashes = sorted(reserved.intersection(self.derived))
        if clashes:
            raise ValueError(f"Derived column names clash with site columns: {clashes}")
        return self


def load_config(config_path: Path) -> PipelineConfig:
    """
    Load and validate a pipeline configuration file.

    Relative paths for the site table and the work directory are resolved
    relative to the config file location.

    Args:
        config_path: Path to the pipeline configuration TOML file

    Returns:
        Validated PipelineConfig instance with resolved paths

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the TOML file is malformed
        pydantic.ValidationError: If the configuration is invalid

    Example:
        >>> config = load_config(Path("pipeline.toml"))
        >>> config.settings.scope
        'watershed'
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from: {config_path}")

    try:
        with config_path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in configuration file: {e}") from e

    config = PipelineConfig.model_validate(data)

    config_dir = config_path.parent
    sites_path = Path(config.inputs.sites)
    if not sites_path.is_absolute():
        config.inputs.sites = str((config_dir / sites_path).resolve())
        logger.debug(f"Resolved sites path: {config.inputs.sites}")

    work_dir = Path(config.settings.work_dir)
    if not work_dir.is_absolute():
        config.settings.work_dir = str((config_dir / work_dir).resolve())
        logger.debug(f"Resolved work dir: {config.settings.work_dir}")

    logger.info(
        f"Loaded configuration with {len(config.inputs.variables)} variable(s) "
        f"and {len(config.derived)} derived column(s)"
    )

    return config
