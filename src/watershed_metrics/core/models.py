"""
Data model for the enrichment pipeline.

Sites go in, CatchmentLinks come out of the resolver, MetricRows come out of
the fetcher. The enriched table itself is a pandas DataFrame (see
fetcher.merge_metrics).
"""

from dataclasses import dataclass, field
from enum import Enum


class Scope(str, Enum):
    """StreamCat area of interest."""

    CATCHMENT = "catchment"
    WATERSHED = "watershed"

    @property
    def suffix(self) -> str:
        """Suffix StreamCat appends to metric columns for this scope."""
        return "CAT" if self is Scope.CATCHMENT else "WS"


class LinkStatus(str, Enum):
    """Resolution status of a site."""

    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class Site:
    """A named point. Coordinates are in the run's CRS."""

    site_id: str
    longitude: float
    latitude: float


@dataclass(frozen=True)
class CatchmentLink:
    """
    Site to COMID link produced by the resolver.

    Attributes:
        site_id: Identifier of the site
        comid: NHDPlus COMID, or None when unresolved
        status: Resolution status
        longitude: Longitude the link was resolved from
        latitude: Latitude the link was resolved from
    """

    site_id: str
    comid: str | None
    status: LinkStatus
    longitude: float
    latitude: float

    def __post_init__(self) -> None:
        """Keep comid and status consistent."""
        if self.status is LinkStatus.RESOLVED and not self.comid:
            raise ValueError(f"Resolved link for site '{self.site_id}' must carry a comid")
        if self.status is LinkStatus.UNRESOLVED and self.comid is not None:
            raise ValueError(f"Unresolved link for site '{self.site_id}' cannot carry a comid")

    @property
    def resolved(self) -> bool:
        return self.status is LinkStatus.RESOLVED

    @classmethod
    def unresolved(cls, site: Site) -> "CatchmentLink":
        return cls(site.site_id, None, LinkStatus.UNRESOLVED, site.longitude, site.latitude)

    @classmethod
    def for_site(cls, site: Site, comid: str) -> "CatchmentLink":
        return cls(site.site_id, comid, LinkStatus.RESOLVED, site.longitude, site.latitude)

    def matches(self, site: Site) -> bool:
        """True if the link was resolved from this site's current coordinates."""
        return self.longitude == site.longitude and self.latitude == site.latitude


@dataclass(frozen=True)
class VariableSpec:
    """One entry of the StreamCat variable catalog."""

    name: str
    full_name: str
    valid: bool = True


@dataclass
class MetricRow:
    """Metric values for one COMID, keyed by caller-facing column name."""

    comid: str
    scope: Scope
    values: dict[str, float | None] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """True if no value was returned for this COMID."""
        return all(v is None for v in self.values.values())
