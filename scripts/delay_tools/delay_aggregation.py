"""Grouped summary statistics over a transit delay observation table.

Every chart in the delay report is driven by one call to ``aggregate``: pick
the grouping dimensions, pick a statistic (count, sum, or mean of a numeric
column), and get back an immutable ``SummaryTable`` of ``(group key, value)``
rows.

Ordering rules:
    - Categorical dimensions (vehicle, incident) keep first-seen key order.
      ``reorder_by_statistic`` ranks them by value when a chart needs it.
    - Chronological dimensions (day_of_week, month, month_truncated_date) are
      always returned in calendar order. Days run Monday to Sunday and months
      run January to December, whatever order the rows arrive in.

The engine never mutates its input. Temporal dimensions that are missing
from the table are derived on a copy from the ``date`` column.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Final

import numpy as np
import pandas as pd

# =============================================================================
# CONFIGURATION
# =============================================================================

DAY_ORDER: Final[tuple[str, ...]] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

MONTH_ORDER: Final[tuple[str, ...]] = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

TEMPORAL_GRANULARITIES: Final[tuple[str, ...]] = (
    "day_of_week",
    "month",
    "month_truncated_date",
)

# Selectors accepted in ``group_by``. Tuples are expanded in place.
SUPPORTED_SELECTORS: Final[tuple[str | tuple[str, ...], ...]] = (
    "vehicle",
    "incident",
    ("vehicle", "incident"),
    "day_of_week",
    "month",
    ("month", "vehicle"),
    "month_truncated_date",
)

CALENDAR_NAMES: Final[dict[str, tuple[str, ...]]] = {
    "day_of_week": DAY_ORDER,
    "month": MONTH_ORDER,
}

STATISTICS: Final[tuple[str, ...]] = ("count", "sum", "mean")


# =============================================================================
# ERRORS
# =============================================================================


class AggregationError(Exception):
    """Base class for every failure raised while building a summary table."""


class EmptyInputError(AggregationError, ValueError):
    """The observation table has no rows to aggregate."""


class UnsupportedDimensionError(AggregationError, ValueError):
    """A ``group_by`` selector or temporal granularity is not recognised."""


class UnsupportedStatisticError(AggregationError, ValueError):
    """The requested statistic is not one of count, sum, or mean."""


class InvalidObservationError(AggregationError, ValueError):
    """A row breaks the input contract (null key, bad delay, bad date)."""


class SchemaError(AggregationError, KeyError):
    """A column the request depends on is not in the table."""

    def __str__(self) -> str:
        # KeyError.__str__ repr()s the message; keep it readable.
        return str(self.args[0]) if self.args else ""


class MissingValueColumnError(SchemaError):
    """``sum``/``mean`` was requested without a usable numeric value column."""


# =============================================================================
# SUMMARY TABLE
# =============================================================================


@dataclass(frozen=True)
class SummaryTable:
    """Immutable result of one aggregation request.

    Attributes:
        dimensions: Dimension column names, in grouping order.
        statistic: ``"count"``, ``"sum"``, or ``"mean"``.
        value_column: Column the statistic was computed over (``None`` for count).
        rows: ``(group_key_tuple, value)`` pairs in display order.
    """

    dimensions: tuple[str, ...]
    statistic: str
    value_column: str | None
    rows: tuple[tuple[tuple[Any, ...], float], ...]

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[tuple[tuple[Any, ...], float]]:
        return iter(self.rows)

    @property
    def value_label(self) -> str:
        """Column name used for the statistic in exports, e.g. ``sum_delay``."""
        if self.value_column is None or self.statistic == "count":
            return self.statistic
        return f"{self.statistic}_{self.value_column}"

    def keys(self) -> list[tuple[Any, ...]]:
        return [key for key, _ in self.rows]

    def values(self) -> list[float]:
        return [value for _, value in self.rows]

    def head(self, n: int) -> SummaryTable:
        """Return a new table holding only the first ``n`` rows."""
        return SummaryTable(self.dimensions, self.statistic, self.value_column, self.rows[:n])

    def as_dict(self) -> dict[Any, float]:
        """Map group keys to values.

        Single-dimension tables are keyed by the bare value (``{"Bus": 40.0}``);
        multi-dimension tables keep the key tuple.
        """
        if len(self.dimensions) == 1:
            return {key[0]: value for key, value in self.rows}
        return {key: value for key, value in self.rows}

    def to_frame(self) -> pd.DataFrame:
        """Return the table as a DataFrame with one column per dimension."""
        records = [
            {**dict(zip(self.dimensions, key)), self.value_label: value} for key, value in self.rows
        ]
        return pd.DataFrame.from_records(records, columns=[*self.dimensions, self.value_label])


# =============================================================================
# VALIDATION
# =============================================================================


def resolve_dimensions(group_by: Sequence[str | tuple[str, ...]]) -> tuple[str, ...]:
    """Flatten ``group_by`` selectors into an ordered, de-duplicated dimension tuple."""
    if isinstance(group_by, (str, tuple)):
        # A bare "vehicle" or ("month", "vehicle") is one selector.
        group_by = [group_by]
    if not group_by:
        raise UnsupportedDimensionError("group_by must name at least one dimension")

    dimensions: list[str] = []
    for selector in group_by:
        if isinstance(selector, list):
            selector = tuple(selector)
        if selector not in SUPPORTED_SELECTORS:
            raise UnsupportedDimensionError(
                f"Unsupported group_by selector {selector!r}; "
                f"expected one of {list(SUPPORTED_SELECTORS)}"
            )
        parts = selector if isinstance(selector, tuple) else (selector,)
        for part in parts:
            if part not in dimensions:
                dimensions.append(part)
    return tuple(dimensions)


def check_value_column(table: pd.DataFrame, value_column: str | None) -> None:
    """Raise unless ``value_column`` is a numeric column of finite, non-negative entries."""
    if value_column is None or value_column not in table.columns:
        raise MissingValueColumnError(
            f"Value column {value_column!r} is required for sum/mean and is not in the table "
            f"(columns: {list(table.columns)})"
        )
    values = table[value_column]
    if not pd.api.types.is_numeric_dtype(values) or pd.api.types.is_bool_dtype(values):
        raise MissingValueColumnError(
            f"Value column {value_column!r} must be numeric, found dtype {values.dtype}"
        )

    n_missing = int(values.isna().sum())
    if n_missing:
        raise InvalidObservationError(f"{n_missing} row(s) have a missing {value_column!r} value")
    as_float = values.to_numpy(dtype=float)
    n_bad = int((~np.isfinite(as_float) | (as_float < 0)).sum())
    if n_bad:
        raise InvalidObservationError(
            f"{n_bad} row(s) have a negative or non-finite {value_column!r} value"
        )


def check_key_columns(table: pd.DataFrame, dimensions: Sequence[str]) -> None:
    """Raise if a dimension column is missing, has null or blank keys, or leaves its calendar."""
    for dim in dimensions:
        if dim not in table.columns:
            raise SchemaError(f"Dimension column {dim!r} is not in the table")
        column = table[dim]
        n_null = int(column.isna().sum())
        if n_null:
            raise InvalidObservationError(f"{n_null} row(s) have a null {dim!r} value")
        n_blank = int((column.astype(str).str.strip() == "").sum())
        if n_blank:
            raise InvalidObservationError(f"{n_blank} row(s) have a blank {dim!r} value")

        bad: list[str] = []
        if dim == "month_truncated_date":
            if pd.to_datetime(column, errors="coerce").isna().any():
                bad = ["unparseable date"]
        elif dim in CALENDAR_NAMES:
            allowed = CALENDAR_NAMES[dim]
            bad = sorted({repr(v) for v in column.astype(object).unique() if v not in allowed})
        if bad:
            raise InvalidObservationError(
                f"Column {dim!r} holds values outside its calendar: {', '.join(bad[:5])}"
            )


# =============================================================================
# TEMPORAL DIMENSIONS
# =============================================================================


def derive_temporal_dimension(table: pd.DataFrame, granularity: str) -> pd.DataFrame:
    """Return a copy of ``table`` with a derived time-bucket column.

    Args:
        table: Observation table with a ``date`` column.
        granularity: ``"day_of_week"`` (Monday-first weekday name),
            ``"month"`` (January-first month name), or
            ``"month_truncated_date"`` (first day of the month as a Timestamp).

    Returns:
        A new DataFrame with a column named after ``granularity``. Day and
        month names are ordered categoricals so calendar order survives any
        later sort.

    Raises:
        UnsupportedDimensionError: Unknown granularity.
        SchemaError: No ``date`` column.
        InvalidObservationError: A date that cannot be parsed.
    """
    if granularity not in TEMPORAL_GRANULARITIES:
        raise UnsupportedDimensionError(
            f"Unsupported granularity {granularity!r}; "
            f"expected one of {list(TEMPORAL_GRANULARITIES)}"
        )
    if "date" not in table.columns:
        raise SchemaError("Column 'date' is required to derive temporal dimensions")

    dates = pd.to_datetime(table["date"], errors="coerce")
    n_bad = int(dates.isna().sum())
    if n_bad:
        raise InvalidObservationError(f"{n_bad} row(s) have a missing or unparseable date")

    out = table.copy()
    if granularity == "day_of_week":
        codes = dates.dt.dayofweek.to_numpy()  # Monday == 0
        out[granularity] = pd.Categorical.from_codes(codes, categories=DAY_ORDER, ordered=True)
    elif granularity == "month":
        codes = dates.dt.month.to_numpy() - 1
        out[granularity] = pd.Categorical.from_codes(codes, categories=MONTH_ORDER, ordered=True)
    else:
        out[granularity] = dates.dt.to_period("M").dt.to_timestamp()
    return out


def _calendar_rank(dimension: str, value: Any) -> Any:
    """Sort key placing ``value`` in calendar order for its dimension."""
    if dimension == "day_of_week":
        return DAY_ORDER.index(value)
    if dimension == "month":
        return MONTH_ORDER.index(value)
    return pd.Timestamp(value)


def has_chronological_dimension(summary: SummaryTable) -> bool:
    return any(dim in TEMPORAL_GRANULARITIES for dim in summary.dimensions)


# =============================================================================
# AGGREGATION
# =============================================================================


def aggregate(
    table: pd.DataFrame,
    group_by: Sequence[str | tuple[str, ...]],
    statistic: str,
    value_column: str | None = None,
) -> SummaryTable:
    """Group ``table`` by ``group_by`` and compute one statistic per group.

    Only combinations present in the data are emitted. Rows come out in
    first-seen key order, except that chronological dimensions are put in
    calendar order (stable, so first-seen order holds within each bucket).

    Args:
        table: Observation table. Not modified.
        group_by: Selectors such as ``["vehicle"]``, ``[("vehicle", "incident")]``,
            or ``["month", "vehicle"]``.
        statistic: ``"count"``, ``"sum"``, or ``"mean"``.
        value_column: Numeric column for ``sum``/``mean`` (normally ``"delay"``).
            Ignored for ``count``.

    Returns:
        A new ``SummaryTable``.

    Raises:
        EmptyInputError: ``table`` has no rows.
        UnsupportedDimensionError: Unknown selector.
        UnsupportedStatisticError: Unknown statistic.
        MissingValueColumnError: ``sum``/``mean`` without a numeric value column.
        InvalidObservationError: Null keys or bad value entries.
    """
    if table is None or len(table) == 0:
        raise EmptyInputError("Cannot aggregate an empty observation table")

    dimensions = resolve_dimensions(group_by)
    if statistic not in STATISTICS:
        raise UnsupportedStatisticError(
            f"Unsupported statistic {statistic!r}; expected one of {list(STATISTICS)}"
        )
    if statistic == "count":
        value_column = None
    else:
        check_value_column(table, value_column)

    frame = table
    for dim in dimensions:
        if dim in TEMPORAL_GRANULARITIES and dim not in frame.columns:
            frame = derive_temporal_dimension(frame, dim)
    check_key_columns(frame, dimensions)

    # Plain object keys so grouping follows first appearance rather than category order.
    keys = [frame[dim].astype(object).to_numpy() for dim in dimensions]
    if statistic == "count":
        grouped = frame.groupby(keys, sort=False).size()
    else:
        grouped = frame[value_column].groupby(keys, sort=False).agg(statistic)

    rows: list[tuple[tuple[Any, ...], float]] = []
    for key, value in grouped.items():
        key_tuple = key if isinstance(key, tuple) else (key,)
        rows.append((key_tuple, int(value) if statistic == "count" else float(value)))

    calendar_positions = [i for i, dim in enumerate(dimensions) if dim in TEMPORAL_GRANULARITIES]
    if calendar_positions:
        rows.sort(
            key=lambda row: tuple(
                _calendar_rank(dimensions[i], row[0][i]) for i in calendar_positions
            )
        )

    logging.debug(
        "aggregate group_by=%s statistic=%s value_column=%s -> %d group(s) from %d row(s)",
        dimensions,
        statistic,
        value_column,
        len(rows),
        len(frame),
    )
    return SummaryTable(dimensions, statistic, value_column, tuple(rows))


def reorder_by_statistic(summary: SummaryTable, descending: bool = True) -> SummaryTable:
    """Return ``summary`` with rows ranked by value.

    The sort is stable, so tied groups keep their existing order and a second
    call returns the same sequence as the first.
    """
    ranked = sorted(summary.rows, key=lambda row: row[1], reverse=descending)
    return SummaryTable(summary.dimensions, summary.statistic, summary.value_column, tuple(ranked))


def order_for_chart(summary: SummaryTable) -> SummaryTable:
    """Apply the display ordering for a chart.

    Tables with a day, month, or month-start dimension stay in calendar order.
    Purely categorical tables are ranked by value, largest first.
    """
    if has_chronological_dimension(summary):
        return summary
    return reorder_by_statistic(summary, descending=True)
