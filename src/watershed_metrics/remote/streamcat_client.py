"""
HTTP client for the EPA StreamCat API.

Two endpoints are used:
- variable_info: the catalog of metric short names and their full names
- metrics: metric values for a list of COMIDs at catchment or watershed scope

The client returns the service's payloads with minimal interpretation. Column
remapping and chunking are the fetcher's job.
"""

import io
import logging
import re
from collections.abc import Sequence
from typing import Any

import httpx
import pandas as pd

from watershed_metrics.config.defaults import DEFAULT_STREAMCAT_URL, DEFAULT_TIMEOUT
from watershed_metrics.remote.retry import RemoteServiceError

logger = logging.getLogger(__name__)

METRICS_PATH = "/metrics"
VARIABLE_INFO_PATH = "/variable_info"

# Column names seen in variable_info exports, in order of preference
NAME_COLUMNS = ("metric_name", "name", "variable")
FULL_NAME_COLUMNS = ("full_name", "full_metric_name", "metric_description", "description")
YEAR_COLUMNS = ("year", "years")

YEAR_PLACEHOLDER = re.compile(r"\[year\]", re.IGNORECASE)


def _pick_column(columns: Sequence[str], candidates: Sequence[str]) -> str | None:
    lowered = {c.lower().strip(): c for c in columns}
    for candidate in candidates:
        if candidate in lowered:
            return lowered[candidate]
    return None


def _split_years(years: Any) -> list[str]:
    """Normalize a year cell ("2001, 2004" or [2001, 2004]) to a list of strings."""
    if isinstance(years, (list, tuple)):
        return [str(year) for year in years]
    if years is None or pd.isna(years):
        return []
    return [year for year in re.split(r"[,;\s]+", str(years)) if year]


def parse_variable_info(table: pd.DataFrame) -> list[tuple[str, str]]:
    """
    Turn a variable_info table into (short name, full name) pairs.

    Raises:
        RemoteServiceError: If the table lacks a recognizable name column
    """
    name_col = _pick_column(table.columns, NAME_COLUMNS)
    if name_col is None:
        raise RemoteServiceError(f"variable_info has no metric name column (columns: {list(table.columns)})")

    full_col = _pick_column(table.columns, FULL_NAME_COLUMNS)
    year_col = _pick_column(table.columns, YEAR_COLUMNS)

    pairs: list[tuple[str, str]] = []
    for record in table.to_dict(orient="records"):
        raw_name = record.get(name_col)
        if raw_name is None or pd.isna(raw_name) or not str(raw_name).strip():
            continue
        name = str(raw_name).strip()
        full_name = record.get(full_col) if full_col else None
        full_name = "" if full_name is None or pd.isna(full_name) else str(full_name).strip()
        years = _split_years(record.get(year_col)) if year_col else []

        # "PctDecid[Year]" expands to one catalog entry per listed year
        if YEAR_PLACEHOLDER.search(name) and years:
            for year in years:
                pairs.append((YEAR_PLACEHOLDER.sub(year, name), YEAR_PLACEHOLDER.sub(year, full_name)))
        else:
            pairs.append((name, full_name))

    return pairs


class StreamCatClient:
    """Thin wrapper around the StreamCat REST API."""

    def __init__(
        self,
        base_url: str = DEFAULT_STREAMCAT_URL,
        timeout: float = DEFAULT_TIMEOUT,
        api_key: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: StreamCat API root (".../StreamCat/streams")
            timeout: Per-request timeout in seconds
            api_key: Optional API key sent as the "x-api-key" header
            client: Optional pre-configured httpx.Client (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)
        if api_key:
            self._client.headers["x-api-key"] = api_key

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "StreamCatClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteServiceError(f"StreamCat returned HTTP {e.response.status_code} for {path}") from e
        except httpx.HTTPError as e:
            raise RemoteServiceError(f"StreamCat request to {path} failed: {e}") from e
        return response

    def variable_info(self) -> list[tuple[str, str]]:
        """
        Fetch the variable catalog.

        Returns:
            (short name, full name) pairs; "[Year]" names are expanded per year

        Raises:
            RemoteServiceError: Transport/HTTP failure or unreadable catalog
        """
        response = self._request("GET", VARIABLE_INFO_PATH)

        try:
            if "json" in response.headers.get("content-type", ""):
                payload = response.json()
                records = payload.get("items", payload) if isinstance(payload, dict) else payload
                table = pd.DataFrame.from_records(records)
            else:
                table = pd.read_csv(io.StringIO(response.text))
        except (ValueError, TypeError, pd.errors.ParserError) as e:
            raise RemoteServiceError(f"Malformed variable_info response: {e}") from e

        pairs = parse_variable_info(table)
        if not pairs:
            raise RemoteServiceError("variable_info returned an empty catalog")

        logger.debug(f"StreamCat catalog lists {len(pairs)} variables")
        return pairs

    def metrics(self, variables: Sequence[str], scope: str, comids: Sequence[str]) -> list[dict[str, Any]]:
        """
        Fetch metric values for a set of COMIDs.

        Args:
            variables: Metric short names (joined with commas on the wire)
            scope: "catchment" or "watershed"
            comids: COMIDs to fetch (joined with commas on the wire)

        Returns:
            One dict per COMID as returned by the service, with a "comid" key
            and scope-suffixed metric keys

        Raises:
            RemoteServiceError: Transport/HTTP failure or malformed payload
        """
        data = {
            "name": ",".join(variables),
            "areaOfInterest": scope,
            "comid": ",".join(comids),
        }
        response = self._request("POST", METRICS_PATH, data=data)

        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteServiceError(f"Malformed metrics response: {response.text[:200]!r}") from e

        items = payload.get("items") if isinstance(payload, dict) else payload
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise RemoteServiceError(f"Unexpected metrics payload shape: {type(payload).__name__}")

        return items
