"""
Tests for the SQLite link store.

Uses tmp_path for real database files.
"""

from pathlib import Path

import pytest

from watershed_metrics.core.link_store import LinkStore
from watershed_metrics.core.models import CatchmentLink, LinkStatus, Site


@pytest.fixture
def store(tmp_path: Path) -> LinkStore:
    return LinkStore(tmp_path / "nested" / "links.db")


class TestLinkStore:
    """Tests for LinkStore."""

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        LinkStore(tmp_path / "a" / "b" / "links.db")
        assert (tmp_path / "a" / "b" / "links.db").exists()

    def test_put_and_get(self, store: LinkStore) -> None:
        links = [
            CatchmentLink.for_site(Site("1", -81.2, 41.1), "4000390"),
            CatchmentLink.unresolved(Site("2", -105.2, 40.5)),
        ]

        assert store.put_many(links) == 2

        stored = store.get_many(["1", "2", "missing"])
        assert set(stored) == {"1", "2"}
        assert stored["1"] == links[0]
        assert stored["2"].status is LinkStatus.UNRESOLVED
        assert stored["2"].comid is None

    def test_replace_on_re_resolution(self, store: LinkStore) -> None:
        site = Site("1", 0.0, 0.0)
        store.put_many([CatchmentLink.unresolved(site)])
        store.put_many([CatchmentLink.for_site(site, "11")])

        assert store.get_many(["1"])["1"].comid == "11"
        assert store.stats() == {"total": 1, "resolved": 1, "unresolved": 0}

    def test_get_many_large_batch(self, store: LinkStore) -> None:
        """Lookups larger than one query chunk should return every row."""
        links = [CatchmentLink.for_site(Site(str(i), float(i), 0.0), str(1000 + i)) for i in range(1200)]
        store.put_many(links)

        stored = store.get_many([str(i) for i in range(1200)])
        assert len(stored) == 1200
        assert stored["1199"].comid == "2199"

    def test_all_ordered_by_site_id(self, store: LinkStore) -> None:
        store.put_many([CatchmentLink.for_site(Site(s, 0.0, 0.0), "1") for s in ["b", "c", "a"]])
        assert [link.site_id for link in store.all()] == ["a", "b", "c"]

    def test_delete(self, store: LinkStore) -> None:
        store.put_many([CatchmentLink.for_site(Site(s, 0.0, 0.0), "1") for s in ["a", "b"]])

        assert store.delete(["a", "zzz"]) == 1
        assert [link.site_id for link in store.all()] == ["b"]

    def test_stats_empty(self, store: LinkStore) -> None:
        assert store.stats() == {"total": 0, "resolved": 0, "unresolved": 0}

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        db_path = tmp_path / "links.db"
        LinkStore(db_path).put_many([CatchmentLink.for_site(Site("1", 0.0, 0.0), "11")])

        assert LinkStore(db_path).get_many(["1"])["1"].comid == "11"
