"""
Resolve sites to NHDPlus COMIDs.

Sites are sent to NLDI in batches. Each batch is retried as a whole on
transient failures; a batch that exhausts its retries is recorded as
unresolved rather than failing the run. Every finished batch is written to
the link store before the next one starts.

NLDI's answer for a batch is a single delimited string that is paired back
onto the batch by position, so the number of returned tokens must equal the
number of sites sent. A mismatch raises ResolutionCountMismatch. A point NLDI
places in no catchment comes back as a placeholder token and is stored
unresolved.
"""

import logging
import threading
from collections import Counter
from collections.abc import Sequence

from tqdm import tqdm

from watershed_metrics.config.defaults import DEFAULT_CRS, DEFAULT_RESOLVE_BATCH_SIZE
from watershed_metrics.core.exceptions import PipelineCancelled, ResolutionCountMismatch
from watershed_metrics.core.link_store import LinkStore
from watershed_metrics.core.models import CatchmentLink, Site
from watershed_metrics.remote.nldi_client import COMID_DELIMITER, NO_CATCHMENT, NLDIClient
from watershed_metrics.remote.retry import RemoteServiceError, RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


def split_comids(response: str) -> list[str | None]:
    """
    Split a delimited COMID response into tokens.

    A NO_CATCHMENT token becomes None: NLDI answered, but the point lies in no
    catchment.

    Raises:
        RemoteServiceError: If the response is not a string or has blank tokens
    """
    if not isinstance(response, str):
        raise RemoteServiceError(f"Expected a delimited string of COMIDs, got {type(response).__name__}")

    if not response.strip():
        return []

    tokens = [token.strip() for token in response.split(COMID_DELIMITER)]
    if any(not token for token in tokens):
        raise RemoteServiceError(f"Malformed COMID response (blank token): {response!r}")
    return [None if token == NO_CATCHMENT else token for token in tokens]


def pair_comids(batch: Sequence[Site], tokens: Sequence[str | None]) -> list[CatchmentLink]:
    """
    Pair COMID tokens with the batch they answer, by position.

    A None token yields an unresolved link for its site.

    Raises:
        ResolutionCountMismatch: If the counts differ
    """
    if len(tokens) != len(batch):
        raise ResolutionCountMismatch(batch, tokens)
    return [
        CatchmentLink.unresolved(site) if comid is None else CatchmentLink.for_site(site, comid)
        for site, comid in zip(batch, tokens, strict=True)
    ]


class SiteResolver:
    """Batching, retrying, checkpointing site resolver."""

    def __init__(
        self,
        service: NLDIClient,
        store: LinkStore,
        batch_size: int = DEFAULT_RESOLVE_BATCH_SIZE,
        policy: RetryPolicy | None = None,
        cancel_event: threading.Event | None = None,
        show_progress: bool = False,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            service: Coordinate-resolution client
            store: Durable link table
            batch_size: Sites per remote call
            policy: Retry policy applied to each batch
            cancel_event: Set to stop between batches
            show_progress: Show a tqdm progress bar over batches
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")

        self.service = service
        self.store = store
        self.batch_size = batch_size
        self.policy = policy or RetryPolicy()
        self.cancel_event = cancel_event
        self.show_progress = show_progress

    def pending(self, sites: Sequence[Site], force: bool = False) -> list[Site]:
        """
        Sites that still need a remote lookup.

        A site is skipped when the store holds a resolved link made from the
        same coordinates, unless force is set.
        """
        if force:
            return list(sites)

        stored = self.store.get_many([site.site_id for site in sites])
        return [
            site
            for site in sites
            if not (site.site_id in stored and stored[site.site_id].resolved and stored[site.site_id].matches(site))
        ]

    def resolve(self, sites: Sequence[Site], crs: str = DEFAULT_CRS, force: bool = False) -> dict[str, CatchmentLink]:
        """
        Resolve sites to COMIDs.

        Args:
            sites: Sites to resolve; site ids must be unique
            crs: CRS of the site coordinates
            force: Re-resolve sites already resolved in the store

        Returns:
            Exactly one link per input site, keyed by site id, in input order

        Raises:
            ValueError: If site ids are duplicated
            ResolutionCountMismatch: If NLDI answers a batch with the wrong count
            PipelineCancelled: If cancel_event is set between batches
        """
        site_ids = [site.site_id for site in sites]
        duplicates = sorted(sid for sid, count in Counter(site_ids).items() if count > 1)
        if duplicates:
            raise ValueError(f"Duplicate site ids: {duplicates}")

        pending = self.pending(sites, force=force)
        skipped = len(sites) - len(pending)
        if skipped:
            logger.info(f"Skipping {skipped} site(s) already resolved in {self.store.db_path}")

        batches = [pending[i : i + self.batch_size] for i in range(0, len(pending), self.batch_size)]
        if batches:
            logger.info(f"Resolving {len(pending)} site(s) in {len(batches)} batch(es)")

        for number, batch in enumerate(
            tqdm(batches, desc="Resolving sites", unit="batch", disable=not self.show_progress), start=1
        ):
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise PipelineCancelled(f"Resolution cancelled before batch {number}/{len(batches)}")
            self._resolve_batch(batch, crs, number)

        links = self.store.get_many(site_ids)
        return {site_id: links[site_id] for site_id in site_ids}

    def _resolve_batch(self, batch: list[Site], crs: str, number: int) -> None:
        points = [(site.longitude, site.latitude) for site in batch]

        def attempt() -> list[str | None]:
            return split_comids(self.service.comids_for_points(points, crs))

        try:
            tokens = call_with_retry(attempt, self.policy, f"NLDI batch {number}")
        except RemoteServiceError:
            logger.warning(f"Batch {number}: marking {len(batch)} site(s) unresolved after exhausting retries")
            self.store.put_many(CatchmentLink.unresolved(site) for site in batch)
            return

        try:
            links = pair_comids(batch, tokens)
        except ResolutionCountMismatch as e:
            logger.error(f"Batch {number}: {e}")
            raise

        unplaced = [link.site_id for link in links if not link.resolved]
        if unplaced:
            logger.warning(f"Batch {number}: no catchment found for site(s) {unplaced}")

        self.store.put_many(links)
        logger.debug(f"Batch {number}: stored {len(links)} link(s)")
