"""
Fetch StreamCat metrics for COMIDs and merge them onto the site table.

StreamCat names its columns after the metric plus a scope suffix ("CAT" or
"WS") and has changed its casing over time. The fetcher maps whatever comes
back onto a caller-chosen naming convention, so nothing downstream depends on
the service's spelling.
"""

import logging
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Literal

import pandas as pd
from tqdm import tqdm

from watershed_metrics.config.defaults import DEFAULT_FETCH_BATCH_SIZE
from watershed_metrics.core.catalog import VariableCatalog
from watershed_metrics.core.exceptions import InvalidVariableSet, PipelineCancelled
from watershed_metrics.core.models import CatchmentLink, LinkStatus, MetricRow, Scope
from watershed_metrics.remote.retry import RemoteServiceError, RetryPolicy, call_with_retry
from watershed_metrics.remote.streamcat_client import StreamCatClient

logger = logging.getLogger(__name__)

ColumnNaming = Literal["upper", "snake"]

SITE_COLUMNS = ["site_id", "longitude", "latitude", "comid", "status"]


def upper_column(variable: str, scope: Scope) -> str:
    """StreamCat's own convention: "pctdecid2019" -> "PCTDECID2019WS"."""
    return f"{variable.upper()}{scope.suffix}"


def snake_column(variable: str, scope: Scope) -> str:
    """Lowercase with an explicit scope: "pctdecid2019" -> "pctdecid2019_ws"."""
    return f"{variable.lower()}_{scope.suffix.lower()}"


NAMING: dict[str, Callable[[str, Scope], str]] = {
    "upper": upper_column,
    "snake": snake_column,
}


def metric_columns(variables: Iterable[str], scope: Scope, naming: ColumnNaming = "upper") -> list[str]:
    """Caller-facing column names for variables, in the given order."""
    namer = NAMING[naming]
    return [namer(variable, scope) for variable in variables]


class MetricFetcher:
    """Chunked, retrying StreamCat metric fetcher."""

    def __init__(
        self,
        service: StreamCatClient,
        catalog: VariableCatalog,
        batch_size: int | None = DEFAULT_FETCH_BATCH_SIZE,
        naming: ColumnNaming = "upper",
        policy: RetryPolicy | None = None,
        cancel_event: threading.Event | None = None,
        show_progress: bool = False,
    ) -> None:
        """
        Initialize the fetcher.

        Args:
            service: StreamCat client
            catalog: Catalog used to check the variable precondition
            batch_size: Max COMIDs per request (None = one request)
            naming: Column naming convention ("upper" or "snake")
            policy: Retry policy applied to each chunk
            cancel_event: Set to stop between chunks
            show_progress: Show a tqdm progress bar over chunks
        """
        if batch_size is not None and batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if naming not in NAMING:
            raise ValueError(f"Invalid naming '{naming}'. Must be one of {sorted(NAMING)}")

        self.service = service
        self.catalog = catalog
        self.batch_size = batch_size
        self.naming = naming
        self.policy = policy or RetryPolicy()
        self.cancel_event = cancel_event
        self.show_progress = show_progress
        self.failed_chunks = 0

    def _chunks(self, comids: list[str]) -> list[list[str]]:
        if self.batch_size is None:
            return [comids] if comids else []
        return [comids[i : i + self.batch_size] for i in range(0, len(comids), self.batch_size)]

    def remap(self, item: Mapping[str, Any], variables: Sequence[str], scope: Scope) -> dict[str, float | None]:
        """
        Map one remote record onto caller-facing column names.

        Keys are matched case-insensitively against "<variable><suffix>" and,
        failing that, the bare variable name. Unrequested keys are dropped.
        """
        by_key = {str(key).upper(): value for key, value in item.items()}
        namer = NAMING[self.naming]

        values: dict[str, float | None] = {}
        for variable in variables:
            remote_key = f"{variable.upper()}{scope.suffix}"
            value = by_key.get(remote_key, by_key.get(variable.upper()))
            values[namer(variable, scope)] = _to_float(value)
        return values

    def fetch(self, comids: Iterable[str], variables: Iterable[str], scope: Scope) -> list[MetricRow]:
        """
        Fetch metrics for COMIDs.

        Args:
            comids: COMIDs to fetch (duplicates are collapsed)
            variables: Variable short names; must all be in the catalog
            scope: Catchment or watershed aggregation

        Returns:
            One MetricRow per distinct COMID, sorted by COMID. COMIDs whose
            chunk exhausted its retries, or that the service did not return,
            carry null values.

        Raises:
            InvalidVariableSet: If any variable is not in the catalog
            PipelineCancelled: If cancel_event is set between chunks
        """
        scope = Scope(scope)
        variables = list(dict.fromkeys(variables))
        invalid = self.catalog.validate(variables)
        if invalid:
            raise InvalidVariableSet(invalid)

        comid_list = sorted({str(comid) for comid in comids})
        chunks = self._chunks(comid_list)
        found: dict[str, dict[str, float | None]] = {}
        self.failed_chunks = 0

        if chunks:
            logger.info(
                f"Fetching {len(variables)} variable(s) at {scope.value} scope "
                f"for {len(comid_list)} COMID(s) in {len(chunks)} request(s)"
            )

        for number, chunk in enumerate(
            tqdm(chunks, desc="Fetching metrics", unit="chunk", disable=not self.show_progress), start=1
        ):
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise PipelineCancelled(f"Fetch cancelled before chunk {number}/{len(chunks)}")

            try:
                items = call_with_retry(
                    lambda chunk=chunk: self.service.metrics(variables, scope.value, chunk),
                    self.policy,
                    f"StreamCat chunk {number}",
                )
            except RemoteServiceError:
                self.failed_chunks += 1
                logger.warning(f"Chunk {number}: {len(chunk)} COMID(s) will have null metrics")
                continue

            requested = set(chunk)
            for item in items:
                comid = _item_comid(item)
                if comid in requested:
                    found[comid] = self.remap(item, variables, scope)
                else:
                    logger.debug(f"Chunk {number}: ignoring unrequested COMID {comid}")

        empty = dict.fromkeys(metric_columns(variables, scope, self.naming))
        missing = [comid for comid in comid_list if comid not in found]
        if missing:
            logger.warning(f"No metrics for {len(missing)} COMID(s)")

        return [MetricRow(comid=comid, scope=scope, values=found.get(comid, dict(empty))) for comid in comid_list]


def _item_comid(item: Mapping[str, Any]) -> str | None:
    for key, value in item.items():
        if str(key).lower() == "comid" and value is not None:
            # StreamCat may send COMIDs as floats ("4000390.0")
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            return str(value).strip()
    return None


def _to_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if pd.isna(number) else number


def merge_metrics(
    links: Iterable[CatchmentLink],
    rows: Sequence[MetricRow],
    columns: Sequence[str],
) -> pd.DataFrame:
    """
    Merge metric rows onto the site table by COMID.

    Several sites may share a COMID; each keeps its own row. Unresolved sites
    keep their row with null metrics.

    Args:
        links: One link per site, in output order
        rows: Metric rows from MetricFetcher.fetch
        columns: Metric column names, in output order

    Returns:
        DataFrame with SITE_COLUMNS followed by the metric columns
    """
    sites = pd.DataFrame(
        [
            {
                "site_id": link.site_id,
                "longitude": link.longitude,
                "latitude": link.latitude,
                "comid": link.comid,
                "status": link.status.value,
            }
            for link in links
        ],
        columns=SITE_COLUMNS,
    )
    sites["comid"] = sites["comid"].astype("string")

    metrics = pd.DataFrame(
        [{"comid": row.comid, **row.values} for row in rows],
        columns=["comid", *columns],
    )
    metrics["comid"] = metrics["comid"].astype("string")
    for column in columns:
        metrics[column] = pd.to_numeric(metrics[column], errors="coerce").astype("Float64")

    merged = sites.merge(metrics, on="comid", how="left", validate="many_to_one")

    # An unresolved site never carries metrics
    if columns:
        unresolved = merged["status"] != LinkStatus.RESOLVED.value
        merged.loc[unresolved, list(columns)] = pd.NA

    return merged
