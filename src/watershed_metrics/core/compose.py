"""
Derived columns computed from fetched metrics.

A rule is any callable taking a row and returning a number. Rows are passed
as RowView objects: reading a column that is absent or null raises
MissingValue, which compose() turns into a null result for that row only.
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any

import pandas as pd

from watershed_metrics.config.schema import DerivedRuleConfig

logger = logging.getLogger(__name__)


class MissingValue(KeyError):
    """Raised by RowView when a rule reads an absent or null column."""


class RowView(Mapping):
    """Read-only mapping over one row that refuses to hand out nulls."""

    def __init__(self, row: Mapping[str, Any]) -> None:
        self._row = row

    def __getitem__(self, column: str) -> Any:
        if column not in self._row:
            raise MissingValue(column)
        value = self._row[column]
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            raise MissingValue(column)
        return value

    def get(self, column: str, default: Any = None) -> Any:
        """Same as row[column]; a default would hide a missing source column."""
        return self[column]

    def __iter__(self):
        return iter(self._row)

    def __len__(self) -> int:
        return len(self._row)


Rule = Callable[[RowView], Any]


def sum_of(*columns: str) -> Rule:
    """Rule summing the given columns."""
    if not columns:
        raise ValueError("sum_of needs at least one column")

    def rule(row: RowView) -> float:
        return sum(float(row[column]) for column in columns)

    return rule


def mean_of(*columns: str) -> Rule:
    """Rule averaging the given columns."""
    if not columns:
        raise ValueError("mean_of needs at least one column")

    def rule(row: RowView) -> float:
        return sum(float(row[column]) for column in columns) / len(columns)

    return rule


OPERATIONS: dict[str, Callable[..., Rule]] = {
    "sum": sum_of,
    "mean": mean_of,
}


def rules_from_config(derived: Mapping[str, DerivedRuleConfig]) -> dict[str, Rule]:
    """Build rules from the [derived.<name>] tables of a pipeline config."""
    return {name: OPERATIONS[cfg.op](*cfg.columns) for name, cfg in derived.items()}


def compose(enriched: pd.DataFrame, rules: Mapping[str, Rule]) -> pd.DataFrame:
    """
    Add one column per rule to a copy of the enriched table.

    Args:
        enriched: Enriched site table
        rules: Mapping of new column name to rule

    Returns:
        New DataFrame with the derived columns appended, in rules order.
        A row where a rule reads a missing or null column gets null.
    """
    result = enriched.copy()
    records = enriched.to_dict(orient="records")

    for name, rule in rules.items():
        values: list[Any] = []
        nulls = 0
        for record in records:
            try:
                values.append(rule(RowView(record)))
            except MissingValue as e:
                logger.debug(f"Derived column '{name}': missing source {e}")
                values.append(None)
                nulls += 1

        result[name] = pd.to_numeric(pd.Series(values, index=result.index, dtype="object"), errors="coerce")
        if nulls:
            logger.info(f"Derived column '{name}': {nulls} of {len(records)} row(s) null")

    return result
