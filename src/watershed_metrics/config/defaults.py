"""
Default values and environment variables for watershed-metrics configuration.

This module centralizes all default values, environment variable names,
and remote service endpoints used throughout the pipeline and CLI.
"""

# Remote service endpoints
DEFAULT_NLDI_URL = "https://api.water.usgs.gov/nldi/linked-data"
DEFAULT_STREAMCAT_URL = "https://api.epa.gov/StreamCat/streams"

# Default values for pipeline settings
DEFAULT_WORK_DIR = "./work"
DEFAULT_CRS = "EPSG:4326"
DEFAULT_SCOPE = "watershed"
DEFAULT_COLUMN_NAMING = "upper"
DEFAULT_RESOLVE_BATCH_SIZE = 50
DEFAULT_FETCH_BATCH_SIZE = 250
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 2.0  # seconds
DEFAULT_MAX_DELAY = 60.0  # seconds
DEFAULT_TIMEOUT = 120.0  # NLDI and StreamCat are both slow under load

# Default site table columns
DEFAULT_ID_COLUMN = "site_id"
DEFAULT_LON_COLUMN = "longitude"
DEFAULT_LAT_COLUMN = "latitude"

# Environment variable names
ENV_WORK_DIR = "WATERSHED_METRICS_WORK_DIR"
ENV_NLDI_URL = "NLDI_URL"
ENV_STREAMCAT_URL = "STREAMCAT_URL"
ENV_STREAMCAT_API_KEY = "STREAMCAT_API_KEY"

# Checkpoint file names (relative to the work dir)
LINKS_DB_NAME = "links.db"
STATE_FILE_NAME = "pipeline_state.json"
VARIABLES_FILE_NAME = "variables.json"
LINKS_FILE_NAME = "links.csv"
METRICS_FILE_NAME = "metrics.csv"
ENRICHED_FILE_NAME = "enriched.csv"
ENRICHED_GPKG_NAME = "enriched.gpkg"
