"""
Pytest configuration and shared fixtures for the test suite.

The fake services below stand in for NLDI and StreamCat. They record every
call so tests can assert on how many remote requests were made.
"""

import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Add src/ to the Python path so tests run without an install
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from watershed_metrics.config import InputsConfig, PipelineConfig, SettingsConfig  # noqa: E402
from watershed_metrics.core.catalog import VariableCatalog  # noqa: E402
from watershed_metrics.core.models import Site  # noqa: E402
from watershed_metrics.remote.retry import RemoteServiceError, RetryPolicy  # noqa: E402

CATALOG = [
    ("pctdecid2019", "Percent Deciduous Forest 2019"),
    ("pctconif2019", "Percent Coniferous Forest 2019"),
    ("pctmxfst2019", "Percent Mixed Forest 2019"),
    ("pctshrb2019", "Percent Shrub/Scrub 2019"),
    ("pcturbhi2019", "Percent Urban High Intensity 2019"),
    ("elev", "Mean Elevation"),
]


class FakeNLDI:
    """Coordinate resolver answering from a lookup table."""

    def __init__(self, comids: dict[tuple[float, float], str], failures: int = 0) -> None:
        self.comids = comids
        self.failures = failures
        self.calls: list[list[tuple[float, float]]] = []

    def comids_for_points(self, points, crs="EPSG:4326") -> str:
        self.calls.append(list(points))
        if self.failures > 0:
            self.failures -= 1
            raise RemoteServiceError("NLDI is having a bad day")
        return ",".join(self.comids[point] for point in points if point in self.comids)

    def close(self) -> None:
        pass


class FakeStreamCat:
    """StreamCat stand-in serving a fixed catalog and metric table."""

    def __init__(
        self,
        metrics: dict[str, dict[str, float]] | None = None,
        catalog: list[tuple[str, str]] | None = None,
        catalog_failures: int = 0,
        metric_failures: int = 0,
    ) -> None:
        self.metric_table = metrics or {}
        self.catalog = CATALOG if catalog is None else catalog
        self.catalog_failures = catalog_failures
        self.metric_failures = metric_failures
        self.catalog_calls = 0
        self.metric_calls: list[tuple[list[str], str, list[str]]] = []

    def variable_info(self) -> list[tuple[str, str]]:
        self.catalog_calls += 1
        if self.catalog_failures > 0:
            self.catalog_failures -= 1
            raise RemoteServiceError("catalog down")
        return list(self.catalog)

    def metrics(self, variables, scope, comids) -> list[dict]:
        self.metric_calls.append((list(variables), scope, list(comids)))
        if self.metric_failures > 0:
            self.metric_failures -= 1
            raise RemoteServiceError("metrics down")
        return [{"comid": int(comid), **self.metric_table[comid]} for comid in comids if comid in self.metric_table]

    def close(self) -> None:
        pass

    def __enter__(self) -> "FakeStreamCat":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@pytest.fixture(autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.WARNING,  # Reduce noise during tests
        format="%(name)s - %(levelname)s - %(message)s",
    )


@pytest.fixture(autouse=True)
def clear_catalog_cache() -> Iterator[None]:
    """Each test starts with an empty catalog cache."""
    VariableCatalog.invalidate()
    yield
    VariableCatalog.invalidate()


@pytest.fixture
def no_wait_policy() -> RetryPolicy:
    """Retry policy with no backoff delay."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def sample_sites() -> list[Site]:
    """Three sites; the last two share a catchment."""
    return [
        Site("1", -81.20298, 41.17274),
        Site("2", -105.2, 40.5),
        Site("3", -105.21, 40.51),
    ]


@pytest.fixture
def sample_comids() -> dict[tuple[float, float], str]:
    return {
        (-81.20298, 41.17274): "4000390",
        (-105.2, 40.5): "2889278",
        (-105.21, 40.51): "2889278",
    }


@pytest.fixture
def fake_nldi(sample_comids: dict[tuple[float, float], str]) -> FakeNLDI:
    return FakeNLDI(sample_comids)


@pytest.fixture
def fake_streamcat() -> FakeStreamCat:
    return FakeStreamCat(
        metrics={
            "4000390": {"PCTDECID2019WS": 42.7, "PCTCONIF2019WS": 10.0},
            "2889278": {"PCTDECID2019WS": 5.5, "PCTCONIF2019WS": 60.25},
        }
    )


@pytest.fixture
def pipeline_config(tmp_path: Path) -> PipelineConfig:
    """Config with a tmp work dir and instant retries."""
    return PipelineConfig(
        settings=SettingsConfig(work_dir=str(tmp_path / "work"), base_delay=0.0, max_delay=0.0),
        inputs=InputsConfig(sites=str(tmp_path / "sites.csv"), variables=["pctdecid2019"]),
    )


@pytest.fixture
def nldi_factory() -> type[FakeNLDI]:
    """The FakeNLDI class, for tests that need a custom lookup table."""
    return FakeNLDI


@pytest.fixture
def streamcat_factory() -> type[FakeStreamCat]:
    """The FakeStreamCat class, for tests that need custom data or failures."""
    return FakeStreamCat
