"""
HTTP client for the USGS NLDI coordinate-to-COMID service.

NLDI resolves one point per request, so comids_for_points issues one request
per point and joins the identifiers into a single comma-delimited string in
request order. A point NLDI places in no catchment contributes NO_CATCHMENT,
so the response always has one token per point.
"""

import logging
from collections.abc import Sequence
from functools import lru_cache

import httpx
import pyproj

from watershed_metrics.config.defaults import DEFAULT_CRS, DEFAULT_NLDI_URL, DEFAULT_TIMEOUT
from watershed_metrics.remote.retry import RemoteServiceError

logger = logging.getLogger(__name__)

COMID_DELIMITER = ","
# Placeholder for a point NLDI places in no catchment; keeps the response positional
NO_CATCHMENT = "-"
POSITION_PATH = "/comid/position"


@lru_cache(maxsize=8)
def _transformer_to_wgs84(crs: str) -> pyproj.Transformer:
    """Build (once per CRS) a transformer from crs to EPSG:4326, lon/lat order."""
    return pyproj.Transformer.from_crs(crs, DEFAULT_CRS, always_xy=True)


def to_wgs84(points: Sequence[tuple[float, float]], crs: str) -> list[tuple[float, float]]:
    """
    Reproject (x, y) points to WGS84 longitude/latitude.

    Args:
        points: Sequence of (x, y) pairs in crs
        crs: Any CRS string pyproj understands (e.g. "EPSG:5070")

    Returns:
        List of (longitude, latitude) pairs
    """
    if pyproj.CRS.from_user_input(crs) == pyproj.CRS.from_user_input(DEFAULT_CRS):
        return [(float(x), float(y)) for x, y in points]

    transformer = _transformer_to_wgs84(crs)
    return [transformer.transform(x, y) for x, y in points]


class NLDIClient:
    """Resolve coordinates to NHDPlus COMIDs via NLDI."""

    def __init__(
        self,
        base_url: str = DEFAULT_NLDI_URL,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: NLDI linked-data root
            timeout: Per-request timeout in seconds
            client: Optional pre-configured httpx.Client (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "NLDIClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def comid_for_point(self, longitude: float, latitude: float) -> str | None:
        """
        Look up the COMID of the catchment containing a WGS84 point.

        Returns:
            COMID as a string, or None if NLDI finds no catchment there

        Raises:
            RemoteServiceError: Transport/HTTP failure or malformed response
        """
        url = f"{self.base_url}{POSITION_PATH}"
        params = {"coords": f"POINT({longitude} {latitude})", "f": "json"}

        try:
            response = self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise RemoteServiceError(f"NLDI request failed: {e}") from e

        if response.status_code == 404:
            logger.debug(f"NLDI found no catchment at ({longitude}, {latitude})")
            return None

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteServiceError(f"NLDI returned HTTP {response.status_code}") from e

        try:
            features = response.json()["features"]
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteServiceError(f"Malformed NLDI response: {response.text[:200]!r}") from e

        if not features:
            return None

        properties = features[0].get("properties") or {}
        comid = properties.get("identifier") or properties.get("comid")
        if comid in (None, ""):
            raise RemoteServiceError(f"NLDI feature has no identifier: {properties}")

        return str(comid)

    def comids_for_points(self, points: Sequence[tuple[float, float]], crs: str = DEFAULT_CRS) -> str:
        """
        Resolve a batch of points to a comma-delimited COMID string.

        Args:
            points: (x, y) pairs in crs, in the order the caller will re-pair
            crs: CRS of the points

        Returns:
            One token per point joined by COMID_DELIMITER in request order;
            NO_CATCHMENT marks a point outside every catchment

        Raises:
            RemoteServiceError: If any lookup in the batch fails
        """
        comids: list[str] = []
        for longitude, latitude in to_wgs84(points, crs):
            comid = self.comid_for_point(longitude, latitude)
            comids.append(NO_CATCHMENT if comid is None else comid)

        return COMID_DELIMITER.join(comids)
