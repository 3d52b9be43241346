"""
Exceptions raised by the enrichment pipeline.

Remote transport failures are raised as RemoteServiceError by the clients in
watershed_metrics.remote and are retried; everything below is what callers
of the pipeline see.
"""

from collections.abc import Sequence

from watershed_metrics.core.models import Site


class WatershedMetricsError(Exception):
    """Base class for pipeline errors."""


class CatalogUnavailable(WatershedMetricsError):
    """Raised when the StreamCat variable catalog cannot be fetched."""


class UnknownVariable(WatershedMetricsError, KeyError):
    """Raised when a variable short name is not in the catalog."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"Unknown variable: '{self.name}'"


class InvalidVariableSet(WatershedMetricsError):
    """Raised when requested variables are not all present in the catalog."""

    def __init__(self, invalid: Sequence[str]) -> None:
        self.invalid = list(invalid)
        super().__init__(f"Variables not found in the StreamCat catalog: {', '.join(self.invalid)}")


class ResolutionCountMismatch(WatershedMetricsError):
    """Raised when NLDI returns a different number of COMIDs than points sent."""

    def __init__(self, sites: Sequence[Site], tokens: Sequence[str]) -> None:
        self.sites = list(sites)
        self.tokens = list(tokens)
        site_ids = ", ".join(site.site_id for site in self.sites)
        super().__init__(
            f"Expected {len(self.sites)} COMIDs but received {len(self.tokens)} "
            f"(sites: {site_ids}; returned: {self.tokens})"
        )


class PipelineFailed(WatershedMetricsError):
    """Raised when a stage ends the run in the failed state."""

    def __init__(self, stage: str, reason: str) -> None:
        self.stage = stage
        self.reason = reason
        super().__init__(f"Pipeline failed during {stage}: {reason}")


class PipelineCancelled(WatershedMetricsError):
    """Raised when a run is cancelled between batches or stages."""
