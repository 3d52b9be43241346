"""
Pipeline orchestrator: validate -> resolve -> fetch -> compose.

Each stage checkpoints its output in the work directory and marks itself
completed in pipeline_state.json. A rerun with the same inputs resumes at the
first incomplete stage; a rerun with different inputs starts over at
validation, while the link table still spares already-resolved sites a
remote lookup.

A run that left sites unresolved or StreamCat requests failed is not final:
the rerun reopens resolving (or fetching) so only those sites and COMIDs are
retried, and metrics already fetched are reused.

State machine:
    validating -> resolving -> fetching -> composing -> done
    validating | resolving | fetching -> failed
"""

import hashlib
import json
import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import geopandas as gpd
import pandas as pd

from watershed_metrics.config.defaults import (
    ENRICHED_FILE_NAME,
    ENRICHED_GPKG_NAME,
    LINKS_DB_NAME,
    LINKS_FILE_NAME,
    METRICS_FILE_NAME,
)
from watershed_metrics.config.schema import PipelineConfig
from watershed_metrics.core.catalog import VariableCatalog
from watershed_metrics.core.checkpoint import CheckpointStore, PipelineState, Stage
from watershed_metrics.core.compose import compose, rules_from_config
from watershed_metrics.core.exceptions import (
    CatalogUnavailable,
    InvalidVariableSet,
    PipelineCancelled,
    PipelineFailed,
    ResolutionCountMismatch,
)
from watershed_metrics.core.fetcher import MetricFetcher, merge_metrics, metric_columns
from watershed_metrics.core.link_store import LinkStore
from watershed_metrics.core.models import CatchmentLink, LinkStatus, MetricRow, Scope, Site
from watershed_metrics.core.resolver import SiteResolver
from watershed_metrics.remote.nldi_client import NLDIClient
from watershed_metrics.remote.retry import RetryPolicy
from watershed_metrics.remote.streamcat_client import StreamCatClient

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outcome of a pipeline run."""

    state: Stage
    enriched: pd.DataFrame | None = None
    invalid_variables: list[str] = field(default_factory=list)
    resolved: int = 0
    unresolved: int = 0
    missing_metrics: int = 0  # resolved sites with no metric values
    output_path: Path | None = None
    resumed_from: Stage | None = None

    @property
    def complete(self) -> bool:
        """True if every site was resolved and carries metrics."""
        return self.state is Stage.DONE and self.unresolved == 0 and self.missing_metrics == 0


def links_from_frame(frame: pd.DataFrame) -> list[CatchmentLink]:
    """Rebuild links from a links.csv checkpoint."""
    links = []
    for record in frame.to_dict(orient="records"):
        comid = record["comid"]
        links.append(
            CatchmentLink(
                site_id=str(record["site_id"]),
                comid=None if pd.isna(comid) else str(comid),
                status=LinkStatus(record["status"]),
                longitude=float(record["longitude"]),
                latitude=float(record["latitude"]),
            )
        )
    return links


def rows_from_frame(frame: pd.DataFrame, scope: Scope, columns: Sequence[str]) -> list[MetricRow]:
    """Rebuild metric rows from a metrics.csv checkpoint."""
    rows = []
    for record in frame.to_dict(orient="records"):
        values = {column: None if pd.isna(record.get(column)) else float(record[column]) for column in columns}
        rows.append(MetricRow(comid=str(record["comid"]), scope=scope, values=values))
    return rows


class Pipeline:
    """Runs the enrichment stages for one configuration."""

    def __init__(
        self,
        config: PipelineConfig,
        nldi: NLDIClient | None = None,
        streamcat: StreamCatClient | None = None,
        cancel_event: threading.Event | None = None,
        show_progress: bool = False,
    ) -> None:
        """
        Initialize the pipeline and its components.

        Args:
            config: Validated pipeline configuration
            nldi: Coordinate-resolution client (built from config if omitted)
            streamcat: StreamCat client (built from config if omitted)
            cancel_event: Set to stop between stages and batches
            show_progress: Show tqdm progress bars
        """
        settings = config.settings
        self.config = config
        self.cancel_event = cancel_event
        self.scope = Scope(settings.scope)

        self.nldi = nldi or NLDIClient(config.services.nldi_url, timeout=settings.timeout)
        self.streamcat = streamcat or StreamCatClient(
            config.services.streamcat_url, timeout=settings.timeout, api_key=config.services.api_key
        )
        policy = RetryPolicy(settings.max_attempts, settings.base_delay, settings.max_delay)

        self.checkpoints = CheckpointStore(Path(settings.work_dir))
        self.store = LinkStore(self.checkpoints.path(LINKS_DB_NAME))
        self.catalog = VariableCatalog(self.streamcat, policy)
        self.resolver = SiteResolver(
            self.nldi,
            self.store,
            batch_size=settings.resolve_batch_size,
            policy=policy,
            cancel_event=cancel_event,
            show_progress=show_progress,
        )
        self.fetcher = MetricFetcher(
            self.streamcat,
            self.catalog,
            batch_size=settings.fetch_batch_size,
            naming=settings.column_naming,
            policy=policy,
            cancel_event=cancel_event,
            show_progress=show_progress,
        )
        self.rules = rules_from_config(config.derived)

    def close(self) -> None:
        self.nldi.close()
        self.streamcat.close()

    def __enter__(self) -> "Pipeline":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def fingerprint(self, sites: Sequence[Site], crs: str, variables: Sequence[str]) -> str:
        """Hash of everything that determines the run's outputs."""
        payload = {
            "sites": [[s.site_id, s.longitude, s.latitude] for s in sites],
            "crs": crs,
            "variables": list(variables),
            "scope": self.scope.value,
            "naming": self.config.settings.column_naming,
            "derived": {name: rule.model_dump() for name, rule in self.config.derived.items()},
        }
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()

    def status(self) -> PipelineState | None:
        """Current checkpoint manifest, if any."""
        return self.checkpoints.load_state()

    def _check_cancel(self, stage: Stage) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise PipelineCancelled(f"Run cancelled before {stage.value}")

    def _enter(self, state: PipelineState, stage: Stage) -> None:
        self._check_cancel(stage)
        state.state = stage
        state.error = None
        self.checkpoints.save_state(state)
        logger.info(f"Stage: {stage.value}")

    def _complete(self, state: PipelineState, stage: Stage) -> None:
        if stage not in state.completed:
            state.completed.append(stage)
        self.checkpoints.save_state(state)

    def _fail(self, state: PipelineState, stage: Stage, reason: str) -> None:
        state.state = Stage.FAILED
        state.error = f"{stage.value}: {reason}"
        self.checkpoints.save_state(state)
        logger.error(f"Pipeline failed during {stage.value}: {reason}")

    def run(
        self,
        sites: Sequence[Site],
        variables: Sequence[str] | None = None,
        crs: str | None = None,
        force_resolve: bool = False,
    ) -> PipelineResult:
        """
        Run (or resume) the pipeline.

        Args:
            sites: Sites to enrich
            variables: Variable short names (defaults to the config's)
            crs: CRS of the site coordinates (defaults to the config's)
            force_resolve: Re-resolve every site, ignoring stored links

        Returns:
            PipelineResult in the DONE state

        Raises:
            CatalogUnavailable: Catalog could not be fetched
            InvalidVariableSet: Requested variables missing from the catalog
            ResolutionCountMismatch: NLDI answered a batch with the wrong count
            PipelineFailed: A condition marked fatal in the settings occurred
            PipelineCancelled: cancel_event was set
        """
        variables = list(self.config.inputs.variables if variables is None else variables)
        if not variables:
            raise ValueError("At least one variable must be requested")
        crs = crs or self.config.settings.crs
        settings = self.config.settings

        # The catalog is refetched once per run
        VariableCatalog.invalidate()

        fingerprint = self.fingerprint(sites, crs, variables)
        state = self.checkpoints.load_state()
        reuse_metrics = False
        if state is None or state.fingerprint != fingerprint or force_resolve:
            if state is not None:
                logger.info("Inputs changed since the last checkpoint; starting from validation")
            state = PipelineState(fingerprint=fingerprint)
        else:
            reuse_metrics = Stage.FETCHING in state.completed or state.failed_chunks > 0
            if state.unresolved:
                logger.info(f"Retrying {state.unresolved} site(s) left unresolved by the last run")
                state.reopen(Stage.RESOLVING)
            elif state.failed_chunks:
                logger.info(f"Retrying {state.failed_chunks} StreamCat request(s) that failed in the last run")
                state.reopen(Stage.FETCHING)
        resumed_from = state.next_stage() if state.completed else None
        if resumed_from is not None:
            logger.info(f"Resuming at stage: {resumed_from.value}")

        try:
            self._validate(state, variables)
            links = self._resolve(state, sites, crs, force_resolve)
            columns = metric_columns(variables, self.scope, settings.column_naming)
            rows = self._fetch(state, links, variables, columns, reuse_metrics)
            enriched, output_path = self._compose(state, links, rows, columns, crs)
        except PipelineCancelled:
            logger.warning(f"Run cancelled during {state.state.value}; completed stages are kept")
            self.checkpoints.save_state(state)
            raise

        state.state = Stage.DONE
        self.checkpoints.save_state(state)

        unresolved = sum(1 for link in links if not link.resolved)
        resolved_rows = enriched[enriched["status"] == LinkStatus.RESOLVED.value]
        missing = int(resolved_rows[columns].isna().all(axis=1).sum()) if columns else 0

        logger.info(
            f"Pipeline done: {len(links) - unresolved} resolved, {unresolved} unresolved, "
            f"{missing} without metrics"
        )

        return PipelineResult(
            state=Stage.DONE,
            enriched=enriched,
            invalid_variables=[],
            resolved=len(links) - unresolved,
            unresolved=unresolved,
            missing_metrics=missing,
            output_path=output_path,
            resumed_from=resumed_from,
        )

    def _validate(self, state: PipelineState, variables: list[str]) -> None:
        if Stage.VALIDATING in state.completed:
            return

        self._enter(state, Stage.VALIDATING)
        try:
            invalid = self.catalog.validate(variables)
        except CatalogUnavailable as e:
            self._fail(state, Stage.VALIDATING, str(e))
            raise

        valid = [name for name in variables if name not in invalid]
        self.checkpoints.write_variables(valid, invalid)
        state.invalid_variables = invalid

        if invalid:
            error = InvalidVariableSet(invalid)
            self._fail(state, Stage.VALIDATING, str(error))
            raise error

        self._complete(state, Stage.VALIDATING)

    def _resolve(
        self, state: PipelineState, sites: Sequence[Site], crs: str, force: bool
    ) -> list[CatchmentLink]:
        if Stage.RESOLVING in state.completed and self.checkpoints.has(LINKS_FILE_NAME):
            return links_from_frame(self.checkpoints.read_frame(LINKS_FILE_NAME))

        self._enter(state, Stage.RESOLVING)
        try:
            links = list(self.resolver.resolve(sites, crs=crs, force=force).values())
        except ResolutionCountMismatch as e:
            self._fail(state, Stage.RESOLVING, str(e))
            raise

        self.checkpoints.write_frame(LINKS_FILE_NAME, merge_metrics(links, [], []))

        unresolved = [link.site_id for link in links if not link.resolved]
        state.unresolved = len(unresolved)
        if unresolved:
            logger.warning(f"{len(unresolved)} site(s) unresolved: {unresolved[:10]}")
            if self.config.settings.fail_on_unresolved:
                reason = f"{len(unresolved)} site(s) could not be resolved"
                self._fail(state, Stage.RESOLVING, reason)
                raise PipelineFailed(Stage.RESOLVING.value, reason)

        self._complete(state, Stage.RESOLVING)
        return links

    def _fetch(
        self,
        state: PipelineState,
        links: list[CatchmentLink],
        variables: list[str],
        columns: list[str],
        reuse: bool = False,
    ) -> list[MetricRow]:
        """
        Fetch metrics for the resolved COMIDs and checkpoint them.

        With reuse set, COMIDs that already carry values in metrics.csv from
        a run with the same inputs are kept and only the rest are fetched.
        """
        if Stage.FETCHING in state.completed and self.checkpoints.has(METRICS_FILE_NAME):
            return rows_from_frame(self.checkpoints.read_frame(METRICS_FILE_NAME), self.scope, columns)

        self._enter(state, Stage.FETCHING)
        comids = {link.comid for link in links if link.resolved}

        previous: list[MetricRow] = []
        if reuse and self.checkpoints.has(METRICS_FILE_NAME):
            previous = [
                row
                for row in rows_from_frame(self.checkpoints.read_frame(METRICS_FILE_NAME), self.scope, columns)
                if row.comid in comids and any(value is not None for value in row.values.values())
            ]
            if previous:
                logger.info(f"Reusing metrics for {len(previous)} COMID(s) from the last run")

        kept = {row.comid for row in previous}
        fetched = self.fetcher.fetch(comids - kept, variables, self.scope)
        rows = sorted([*previous, *fetched], key=lambda row: row.comid)

        metrics = pd.DataFrame([{"comid": row.comid, **row.values} for row in rows], columns=["comid", *columns])
        self.checkpoints.write_frame(METRICS_FILE_NAME, metrics)

        state.failed_chunks = self.fetcher.failed_chunks
        if self.fetcher.failed_chunks and self.config.settings.fail_on_missing_metrics:
            reason = f"{self.fetcher.failed_chunks} StreamCat request(s) exhausted their retries"
            self._fail(state, Stage.FETCHING, reason)
            raise PipelineFailed(Stage.FETCHING.value, reason)

        self._complete(state, Stage.FETCHING)
        return rows

    def _compose(
        self,
        state: PipelineState,
        links: list[CatchmentLink],
        rows: list[MetricRow],
        columns: list[str],
        crs: str,
    ) -> tuple[pd.DataFrame, Path]:
        output_path = self.checkpoints.path(ENRICHED_FILE_NAME)
        if Stage.COMPOSING in state.completed and output_path.exists():
            return self.checkpoints.read_frame(ENRICHED_FILE_NAME), output_path

        self._enter(state, Stage.COMPOSING)
        enriched = compose(merge_metrics(links, rows, columns), self.rules)
        self.checkpoints.write_frame(ENRICHED_FILE_NAME, enriched)

        if self.config.settings.write_geopackage:
            self.write_geopackage(enriched, crs)

        self._complete(state, Stage.COMPOSING)
        return enriched, output_path

    def write_geopackage(self, enriched: pd.DataFrame, crs: str) -> Path:
        """Write the enriched table as points to enriched.gpkg."""
        path = self.checkpoints.path(ENRICHED_GPKG_NAME)
        frame = enriched.copy()
        for column in frame.columns:
            if isinstance(frame[column].dtype, pd.StringDtype):
                frame[column] = frame[column].astype(object)
            elif isinstance(frame[column].dtype, pd.Float64Dtype):
                frame[column] = frame[column].astype("float64")

        gdf = gpd.GeoDataFrame(
            frame,
            geometry=gpd.points_from_xy(frame["longitude"], frame["latitude"]),
            crs=crs,
        )
        gdf.to_file(path, driver="GPKG")
        logger.info(f"Wrote GeoPackage: {path}")
        return path
