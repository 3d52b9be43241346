"""
StreamCat variable catalog: listing, validation and full-name lookup.

The catalog is fetched once and held in a process-wide LRU cache keyed by the
client instance. Pipeline runs call invalidate() at start so each run sees
the catalog as it is at that time; nothing refreshes it in the background.
"""

import logging
from collections.abc import Sequence
from functools import lru_cache

from watershed_metrics.core.exceptions import CatalogUnavailable, UnknownVariable
from watershed_metrics.core.models import VariableSpec
from watershed_metrics.remote.retry import RemoteServiceError, RetryPolicy, call_with_retry
from watershed_metrics.remote.streamcat_client import StreamCatClient

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def _load_catalog(service: StreamCatClient, policy: RetryPolicy) -> dict[str, VariableSpec]:
    """
    Fetch the catalog with retries and index it by lowercased short name.

    Note: failures are not cached, so the next call tries again.
    """
    pairs = call_with_retry(service.variable_info, policy, "StreamCat variable catalog")
    specs = {name.lower(): VariableSpec(name=name, full_name=full_name) for name, full_name in pairs}
    logger.info(f"Loaded StreamCat catalog with {len(specs)} variables")
    return specs


class VariableCatalog:
    """Read-only view of the StreamCat catalog for the current run."""

    def __init__(self, service: StreamCatClient, policy: RetryPolicy | None = None) -> None:
        self.service = service
        self.policy = policy or RetryPolicy()

    def _specs(self) -> dict[str, VariableSpec]:
        try:
            return _load_catalog(self.service, self.policy)
        except RemoteServiceError as e:
            raise CatalogUnavailable(f"StreamCat variable catalog is unavailable: {e}") from e

    def list_variables(self) -> set[VariableSpec]:
        """
        Return every variable in the catalog.

        Raises:
            CatalogUnavailable: If the catalog cannot be fetched after retries
        """
        return set(self._specs().values())

    def validate(self, requested: Sequence[str]) -> list[str]:
        """
        Return the requested names that are not in the catalog.

        Comparison is case-insensitive. The result keeps input order and lists
        each bad name once, so it can be shown to the user as-is.

        Raises:
            CatalogUnavailable: If the catalog cannot be fetched after retries
        """
        specs = self._specs()
        invalid: list[str] = []
        for name in requested:
            if name.strip().lower() not in specs and name not in invalid:
                invalid.append(name)

        if invalid:
            logger.warning(f"Unknown StreamCat variables: {', '.join(invalid)}")
        return invalid

    def full_name(self, short_name: str) -> str:
        """
        Look up the descriptive name of a variable.

        Raises:
            UnknownVariable: If short_name is not in the catalog
        """
        spec = self._specs().get(short_name.strip().lower())
        if spec is None:
            raise UnknownVariable(short_name)
        return spec.full_name

    def search(self, text: str) -> list[VariableSpec]:
        """Variables whose short or full name contains text (case-insensitive), sorted by name."""
        needle = text.strip().lower()
        matches = [
            spec
            for spec in self._specs().values()
            if needle in spec.name.lower() or needle in spec.full_name.lower()
        ]
        return sorted(matches, key=lambda spec: spec.name.lower())

    @staticmethod
    def invalidate() -> None:
        """Drop every cached catalog so the next access refetches it."""
        _load_catalog.cache_clear()
        logger.debug("StreamCat catalog cache cleared")

    @staticmethod
    def cache_info() -> dict:
        """Get LRU cache statistics for the catalog loader."""
        info = _load_catalog.cache_info()
        return {
            "hits": info.hits,
            "misses": info.misses,
            "maxsize": info.maxsize,
            "currsize": info.currsize,
        }
