"""
Load the site table.

CSV files carry explicit id/longitude/latitude columns. Vector files
(GeoPackage, Shapefile, GeoJSON) are read with geopandas; their point
geometry supplies the coordinates and their CRS becomes the run CRS.
"""

import logging
from pathlib import Path

import geopandas as gpd
import pandas as pd

from watershed_metrics.config.defaults import DEFAULT_CRS, DEFAULT_ID_COLUMN, DEFAULT_LAT_COLUMN, DEFAULT_LON_COLUMN
from watershed_metrics.core.models import Site

logger = logging.getLogger(__name__)

VECTOR_SUFFIXES = {".gpkg", ".shp", ".geojson", ".json"}


def sites_from_frame(
    frame: pd.DataFrame,
    id_column: str = DEFAULT_ID_COLUMN,
    lon_column: str = DEFAULT_LON_COLUMN,
    lat_column: str = DEFAULT_LAT_COLUMN,
) -> list[Site]:
    """
    Build Sites from a table.

    Raises:
        ValueError: On missing columns, blank or duplicate ids, or
            non-numeric coordinates
    """
    missing = [c for c in (id_column, lon_column, lat_column) if c not in frame.columns]
    if missing:
        raise ValueError(f"Site table is missing column(s): {missing} (available: {list(frame.columns)})")

    ids = frame[id_column].astype("string").str.strip()
    if ids.isna().any() or (ids == "").any():
        raise ValueError(f"Site table has blank values in '{id_column}'")

    duplicates = sorted(ids[ids.duplicated()].unique())
    if duplicates:
        raise ValueError(f"Duplicate site ids found: {duplicates}")

    lons = pd.to_numeric(frame[lon_column], errors="coerce")
    lats = pd.to_numeric(frame[lat_column], errors="coerce")
    bad = ids[lons.isna() | lats.isna()].tolist()
    if bad:
        raise ValueError(f"Sites with missing or non-numeric coordinates: {bad}")

    return [Site(site_id=str(i), longitude=float(x), latitude=float(y)) for i, x, y in zip(ids, lons, lats)]


def load_sites(
    path: Path,
    id_column: str = DEFAULT_ID_COLUMN,
    lon_column: str = DEFAULT_LON_COLUMN,
    lat_column: str = DEFAULT_LAT_COLUMN,
    crs: str = DEFAULT_CRS,
) -> tuple[list[Site], str]:
    """
    Load sites from a CSV or point vector file.

    Args:
        path: Site table path
        id_column: Column holding the site id
        lon_column: Longitude (x) column, CSV only
        lat_column: Latitude (y) column, CSV only
        crs: CRS of CSV coordinates; vector files use their own CRS

    Returns:
        (sites, crs) tuple

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the table is unusable
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sites file not found: {path}")

    logger.info(f"Loading sites from: {path}")

    if path.suffix.lower() in VECTOR_SUFFIXES:
        gdf = gpd.read_file(path)
        if id_column not in gdf.columns:
            raise ValueError(f"Site file {path} has no '{id_column}' column (available: {list(gdf.columns)})")
        if not gdf.geom_type.eq("Point").all():
            raise ValueError(f"Site file {path} must contain only Point geometries")
        if gdf.crs is not None:
            crs = gdf.crs.to_string()
        frame = pd.DataFrame({id_column: gdf[id_column], lon_column: gdf.geometry.x, lat_column: gdf.geometry.y})
    else:
        frame = pd.read_csv(path, dtype={id_column: str})

    sites = sites_from_frame(frame, id_column, lon_column, lat_column)
    logger.info(f"Loaded {len(sites)} site(s) (CRS {crs})")
    return sites, crs
