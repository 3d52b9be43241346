"""
Tests for derived-column composition.
"""

import pandas as pd
import pytest

from watershed_metrics.config.schema import DerivedRuleConfig
from watershed_metrics.core.compose import MissingValue, RowView, compose, mean_of, rules_from_config, sum_of

FOREST_COLUMNS = ["PCTDECID2019WS", "PCTCONIF2019WS", "PCTMXFST2019WS", "PCTSHRB2019WS"]


@pytest.fixture
def enriched() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "site_id": ["1", "2"],
            "PCTDECID2019WS": pd.array([42.7, 5.5], dtype="Float64"),
            "PCTCONIF2019WS": pd.array([10.0, 60.25], dtype="Float64"),
            "PCTMXFST2019WS": pd.array([1.3, None], dtype="Float64"),
            "PCTSHRB2019WS": pd.array([2.0, 4.25], dtype="Float64"),
        }
    )


class TestRowView:
    """Tests for RowView."""

    def test_reads_values(self) -> None:
        assert RowView({"a": 1.5})["a"] == 1.5

    def test_absent_column(self) -> None:
        with pytest.raises(MissingValue):
            RowView({"a": 1.5})["b"]

    def test_null_values(self) -> None:
        row = RowView({"a": None, "b": float("nan"), "c": pd.NA})
        for column in "abc":
            with pytest.raises(MissingValue):
                row[column]

    def test_get_raises_instead_of_defaulting(self) -> None:
        row = RowView({"a": 1.5, "b": None})
        assert row.get("a") == 1.5
        for column in ["b", "c"]:
            with pytest.raises(MissingValue):
                row.get(column, 0.0)

    def test_mapping_protocol(self) -> None:
        row = RowView({"a": 1, "b": 2})
        assert len(row) == 2
        assert list(row) == ["a", "b"]


class TestRules:
    """Tests for the built-in rules."""

    def test_sum_of(self) -> None:
        assert sum_of("a", "b")(RowView({"a": 1.0, "b": 2.5})) == 3.5

    def test_mean_of(self) -> None:
        assert mean_of("a", "b")(RowView({"a": 1.0, "b": 2.0})) == 1.5

    def test_rules_need_columns(self) -> None:
        with pytest.raises(ValueError):
            sum_of()
        with pytest.raises(ValueError):
            mean_of()

    def test_rules_from_config(self) -> None:
        rules = rules_from_config(
            {
                "total": DerivedRuleConfig(columns=["a", "b"]),
                "avg": DerivedRuleConfig(op="mean", columns=["a", "b"]),
            }
        )
        row = RowView({"a": 2.0, "b": 4.0})
        assert rules["total"](row) == 6.0
        assert rules["avg"](row) == 3.0


class TestCompose:
    """Tests for compose."""

    def test_forest_sum(self, enriched: pd.DataFrame) -> None:
        """The forest total is the exact sum of the four land-cover columns."""
        result = compose(enriched, {"pctforest2019ws": sum_of(*FOREST_COLUMNS)})

        expected = 42.7 + 10.0 + 1.3 + 2.0
        assert result.loc[0, "pctforest2019ws"] == pytest.approx(expected)

    def test_missing_input_gives_null(self, enriched: pd.DataFrame) -> None:
        """A null source column nulls that row only."""
        result = compose(enriched, {"pctforest2019ws": sum_of(*FOREST_COLUMNS)})

        assert not pd.isna(result.loc[0, "pctforest2019ws"])
        assert pd.isna(result.loc[1, "pctforest2019ws"])

    def test_absent_column_gives_null(self, enriched: pd.DataFrame) -> None:
        result = compose(enriched, {"x": sum_of("PCTDECID2019WS", "NOPE")})
        assert result["x"].isna().all()

    def test_input_not_modified(self, enriched: pd.DataFrame) -> None:
        before = enriched.copy()
        result = compose(enriched, {"x": sum_of("PCTDECID2019WS")})

        assert "x" in result.columns
        assert "x" not in enriched.columns
        pd.testing.assert_frame_equal(enriched, before)

    def test_columns_appended_in_rule_order(self, enriched: pd.DataFrame) -> None:
        result = compose(enriched, {"z": sum_of("PCTDECID2019WS"), "a": mean_of("PCTSHRB2019WS")})
        assert list(result.columns)[-2:] == ["z", "a"]

    def test_custom_rule(self, enriched: pd.DataFrame) -> None:
        """Any callable over a row can be a rule."""
        result = compose(enriched, {"ratio": lambda row: row["PCTDECID2019WS"] / row["PCTCONIF2019WS"]})
        assert result.loc[1, "ratio"] == pytest.approx(5.5 / 60.25)

    def test_rule_using_get_on_absent_column_gives_null(self, enriched: pd.DataFrame) -> None:
        """Reading a missing column through get nulls the row instead of crashing compose."""
        result = compose(enriched, {"x": lambda row: row.get("NOPE") + 1})
        assert result["x"].isna().all()

    def test_no_rules(self, enriched: pd.DataFrame) -> None:
        pd.testing.assert_frame_equal(compose(enriched, {}), enriched)
