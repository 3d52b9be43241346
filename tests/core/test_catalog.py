"""
Tests for the StreamCat variable catalog.
"""

import pytest

from watershed_metrics.core.catalog import VariableCatalog
from watershed_metrics.core.exceptions import CatalogUnavailable, UnknownVariable


class TestValidate:
    """Tests for VariableCatalog.validate."""

    def test_all_known(self, fake_streamcat, no_wait_policy) -> None:
        catalog = VariableCatalog(fake_streamcat, no_wait_policy)
        assert catalog.validate(["pctdecid2019", "elev"]) == []

    def test_truncated_name_is_invalid(self, fake_streamcat, no_wait_policy) -> None:
        """A near-miss short name should be reported verbatim."""
        catalog = VariableCatalog(fake_streamcat, no_wait_policy)
        assert catalog.validate(["pctdecid201"]) == ["pctdecid201"]

    def test_case_insensitive(self, fake_streamcat, no_wait_policy) -> None:
        catalog = VariableCatalog(fake_streamcat, no_wait_policy)
        assert catalog.validate(["PctDecid2019", "ELEV"]) == []

    def test_order_kept_and_deduplicated(self, fake_streamcat, no_wait_policy) -> None:
        catalog = VariableCatalog(fake_streamcat, no_wait_policy)
        assert catalog.validate(["zzz", "elev", "aaa", "zzz"]) == ["zzz", "aaa"]

    def test_retries_then_succeeds(self, streamcat_factory, no_wait_policy) -> None:
        service = streamcat_factory(catalog_failures=2)
        catalog = VariableCatalog(service, no_wait_policy)

        assert catalog.validate(["elev"]) == []
        assert service.catalog_calls == 3

    def test_unavailable_after_retries(self, streamcat_factory, no_wait_policy) -> None:
        """Three consecutive failures should surface as CatalogUnavailable."""
        service = streamcat_factory(catalog_failures=3)
        catalog = VariableCatalog(service, no_wait_policy)

        with pytest.raises(CatalogUnavailable, match="unavailable"):
            catalog.validate(["elev"])
        assert service.catalog_calls == 3

    def test_failure_not_cached(self, streamcat_factory, no_wait_policy) -> None:
        service = streamcat_factory(catalog_failures=3)
        catalog = VariableCatalog(service, no_wait_policy)

        with pytest.raises(CatalogUnavailable):
            catalog.list_variables()
        assert catalog.validate(["elev"]) == []


class TestLookups:
    """Tests for list_variables, full_name and search."""

    def test_list_variables(self, fake_streamcat, no_wait_policy) -> None:
        names = {spec.name for spec in VariableCatalog(fake_streamcat, no_wait_policy).list_variables()}
        assert "pctdecid2019" in names
        assert len(names) == 6

    def test_full_name(self, fake_streamcat, no_wait_policy) -> None:
        catalog = VariableCatalog(fake_streamcat, no_wait_policy)
        assert catalog.full_name("pctdecid2019") == "Percent Deciduous Forest 2019"
        assert catalog.full_name(" PCTDECID2019 ") == "Percent Deciduous Forest 2019"

    def test_full_name_unknown(self, fake_streamcat, no_wait_policy) -> None:
        catalog = VariableCatalog(fake_streamcat, no_wait_policy)
        with pytest.raises(UnknownVariable):
            catalog.full_name("pctdecid201")

    def test_search(self, fake_streamcat, no_wait_policy) -> None:
        catalog = VariableCatalog(fake_streamcat, no_wait_policy)

        assert [spec.name for spec in catalog.search("forest")] == ["pctconif2019", "pctdecid2019", "pctmxfst2019"]
        assert [spec.name for spec in catalog.search("ELEV")] == ["elev"]
        assert catalog.search("nothing like this") == []


class TestCaching:
    """Tests for the catalog cache."""

    def test_catalog_fetched_once(self, fake_streamcat, no_wait_policy) -> None:
        """Repeated lookups should reuse the cached catalog."""
        catalog = VariableCatalog(fake_streamcat, no_wait_policy)

        catalog.validate(["elev"])
        catalog.full_name("elev")
        catalog.search("pct")

        assert fake_streamcat.catalog_calls == 1
        assert VariableCatalog.cache_info()["hits"] == 2

    def test_shared_across_instances(self, fake_streamcat, no_wait_policy) -> None:
        VariableCatalog(fake_streamcat, no_wait_policy).validate(["elev"])
        VariableCatalog(fake_streamcat, no_wait_policy).validate(["elev"])
        assert fake_streamcat.catalog_calls == 1

    def test_invalidate_refetches(self, fake_streamcat, no_wait_policy) -> None:
        catalog = VariableCatalog(fake_streamcat, no_wait_policy)

        catalog.validate(["elev"])
        VariableCatalog.invalidate()
        catalog.validate(["elev"])

        assert fake_streamcat.catalog_calls == 2
        assert VariableCatalog.cache_info()["currsize"] == 1
