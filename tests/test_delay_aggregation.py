from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from scripts.delay_tools import delay_aggregation as agg

FIXTURE_PATH = Path(__file__).parent / "fixtures" / "delay_observations.csv"


@pytest.fixture
def three_rows() -> pd.DataFrame:
    """The three-observation example: two bus diversions and one subway mechanical."""
    return pd.DataFrame(
        {
            "date": pd.to_datetime(["2020-01-06", "2020-01-07", "2020-01-08"]),
            "day": ["Monday", "Tuesday", "Wednesday"],
            "vehicle": ["Bus", "Bus", "Subway"],
            "location": ["Kennedy Station", "Finch Station", "Union Station"],
            "incident": ["Diversion", "Diversion", "Mechanical"],
            "delay": [30.0, 10.0, 5.0],
        }
    )


@pytest.fixture
def delays() -> pd.DataFrame:
    df = pd.read_csv(FIXTURE_PATH)
    df["date"] = pd.to_datetime(df["date"])
    df["delay"] = df["delay"].astype(float)
    return df


# -----------------------------------------------------------------------------
# aggregate
# -----------------------------------------------------------------------------


def test_three_row_scenario(three_rows) -> None:
    """Sum, count, and mean by vehicle on the three-row example."""
    assert agg.aggregate(three_rows, ["vehicle"], "sum", "delay").as_dict() == {
        "Bus": 40.0,
        "Subway": 5.0,
    }
    assert agg.aggregate(three_rows, ["vehicle"], "count").as_dict() == {"Bus": 2, "Subway": 1}
    assert agg.aggregate(three_rows, ["vehicle"], "mean", "delay").as_dict() == {
        "Bus": 20.0,
        "Subway": 5.0,
    }


def test_summary_table_shape(three_rows) -> None:
    summary = agg.aggregate(three_rows, ["vehicle"], "sum", "delay")

    assert summary.dimensions == ("vehicle",)
    assert summary.statistic == "sum"
    assert summary.value_column == "delay"
    assert summary.rows == ((("Bus",), 40.0), (("Subway",), 5.0))
    assert len(summary) == 2
    assert list(summary) == list(summary.rows)


def test_count_ignores_value_column(three_rows) -> None:
    summary = agg.aggregate(three_rows, ["vehicle"], "count", "not_a_column")
    assert summary.value_column is None
    assert summary.values() == [2, 1]
    assert all(isinstance(v, int) for v in summary.values())


def test_count_partitions_rows(delays) -> None:
    """Counts grouped by vehicle add back up to the row count."""
    counts = agg.aggregate(delays, ["vehicle"], "count")
    assert sum(counts.values()) == len(delays)
    assert counts.as_dict() == {"Bus": 14, "Subway": 7, "Streetcar": 7}


def test_mean_is_sum_over_count(delays) -> None:
    sums = agg.aggregate(delays, ["vehicle"], "sum", "delay").as_dict()
    counts = agg.aggregate(delays, ["vehicle"], "count").as_dict()
    means = agg.aggregate(delays, ["vehicle"], "mean", "delay").as_dict()

    assert sums == {"Bus": 236.0, "Subway": 29.0, "Streetcar": 127.0}
    for vehicle, mean in means.items():
        assert mean == pytest.approx(sums[vehicle] / counts[vehicle])


def test_first_seen_order_for_categorical(delays) -> None:
    summary = agg.aggregate(delays, ["vehicle"], "count")
    assert summary.keys() == [("Bus",), ("Subway",), ("Streetcar",)]


def test_groups_are_sparse(three_rows) -> None:
    """Only vehicle/incident pairs present in the data are emitted."""
    summary = agg.aggregate(three_rows, [("vehicle", "incident")], "count")
    assert summary.dimensions == ("vehicle", "incident")
    assert summary.as_dict() == {("Bus", "Diversion"): 2, ("Subway", "Mechanical"): 1}


def test_flattened_selectors_match_tuple_selector(delays) -> None:
    as_tuple = agg.aggregate(delays, [("vehicle", "incident")], "sum", "delay")
    as_list = agg.aggregate(delays, ["vehicle", "incident"], "sum", "delay")
    assert as_tuple == as_list


def test_input_is_not_mutated(delays) -> None:
    before = delays.copy()
    agg.aggregate(delays, [("month", "vehicle")], "count")
    agg.aggregate(delays, ["day_of_week"], "mean", "delay")
    pd.testing.assert_frame_equal(delays, before)


def test_to_frame_columns(three_rows) -> None:
    frame = agg.aggregate(three_rows, [("vehicle", "incident")], "mean", "delay").to_frame()
    assert list(frame.columns) == ["vehicle", "incident", "mean_delay"]
    assert frame["mean_delay"].tolist() == [20.0, 5.0]


def test_summary_table_is_frozen(three_rows) -> None:
    summary = agg.aggregate(three_rows, ["vehicle"], "count")
    with pytest.raises(AttributeError):
        summary.rows = ()  # type: ignore[misc]


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


def test_empty_input_raises(three_rows) -> None:
    with pytest.raises(agg.EmptyInputError):
        agg.aggregate(three_rows.iloc[0:0], ["vehicle"], "mean", "delay")


def test_unknown_dimension_raises(three_rows) -> None:
    with pytest.raises(agg.UnsupportedDimensionError):
        agg.aggregate(three_rows, ["not_a_column"], "count")


def test_location_is_not_a_grouping_dimension(three_rows) -> None:
    with pytest.raises(agg.UnsupportedDimensionError):
        agg.aggregate(three_rows, ["location"], "count")


def test_empty_group_by_raises(three_rows) -> None:
    with pytest.raises(agg.UnsupportedDimensionError):
        agg.aggregate(three_rows, [], "count")


def test_unknown_statistic_raises(three_rows) -> None:
    with pytest.raises(agg.UnsupportedStatisticError):
        agg.aggregate(three_rows, ["vehicle"], "median", "delay")


@pytest.mark.parametrize("value_column", [None, "minutes"])
def test_missing_value_column_raises(three_rows, value_column) -> None:
    with pytest.raises(agg.MissingValueColumnError):
        agg.aggregate(three_rows, ["vehicle"], "sum", value_column)


def test_non_numeric_value_column_raises(three_rows) -> None:
    with pytest.raises(agg.MissingValueColumnError):
        agg.aggregate(three_rows, ["vehicle"], "mean", "incident")


def test_missing_delay_fails_fast(three_rows) -> None:
    three_rows.loc[1, "delay"] = float("nan")
    with pytest.raises(agg.InvalidObservationError):
        agg.aggregate(three_rows, ["vehicle"], "sum", "delay")


@pytest.mark.parametrize("bad_delay", [-1.0, float("inf")])
def test_negative_or_infinite_delay_fails_fast(three_rows, bad_delay) -> None:
    three_rows.loc[0, "delay"] = bad_delay
    with pytest.raises(agg.InvalidObservationError):
        agg.aggregate(three_rows, ["vehicle"], "mean", "delay")


def test_null_dimension_value_raises(three_rows) -> None:
    three_rows.loc[2, "vehicle"] = None
    with pytest.raises(agg.InvalidObservationError):
        agg.aggregate(three_rows, ["vehicle"], "count")


@pytest.mark.parametrize("blank", ["", "   "])
def test_blank_dimension_value_raises(three_rows, blank) -> None:
    three_rows.loc[1, "vehicle"] = blank
    with pytest.raises(agg.InvalidObservationError, match="blank"):
        agg.aggregate(three_rows, ["vehicle"], "count")


@pytest.mark.parametrize(
    ("column", "values"),
    [
        ("month", [1, 2, 3]),
        ("month", ["Jan", "Feb", "Mar"]),
        ("day_of_week", ["Mon", "Tue", "Wed"]),
    ],
)
def test_off_calendar_column_raises(three_rows, column, values) -> None:
    """A pre-existing calendar column must hold full English names."""
    with pytest.raises(agg.InvalidObservationError, match="outside its calendar"):
        agg.aggregate(three_rows.assign(**{column: values}), [column], "count")


def test_missing_dimension_column_raises(three_rows) -> None:
    with pytest.raises(agg.SchemaError):
        agg.aggregate(three_rows.drop(columns=["incident"]), ["incident"], "count")


def test_errors_share_a_base_class() -> None:
    for exc in (
        agg.EmptyInputError,
        agg.UnsupportedDimensionError,
        agg.UnsupportedStatisticError,
        agg.InvalidObservationError,
        agg.SchemaError,
        agg.MissingValueColumnError,
    ):
        assert issubclass(exc, agg.AggregationError)


# -----------------------------------------------------------------------------
# reorder_by_statistic / order_for_chart
# -----------------------------------------------------------------------------


def test_reorder_descending(delays) -> None:
    ranked = agg.reorder_by_statistic(agg.aggregate(delays, ["incident"], "sum", "delay"))
    assert ranked.keys()[:3] == [("Diversion",), ("Mechanical",), ("Held By",)]
    assert ranked.values() == sorted(ranked.values(), reverse=True)


def test_reorder_ascending(delays) -> None:
    ranked = agg.reorder_by_statistic(
        agg.aggregate(delays, ["vehicle"], "sum", "delay"), descending=False
    )
    assert ranked.keys() == [("Subway",), ("Streetcar",), ("Bus",)]


def test_reorder_ties_keep_first_seen_order(delays) -> None:
    ranked = agg.reorder_by_statistic(agg.aggregate(delays, ["vehicle"], "count"))
    # Subway and Streetcar both have 7; Subway appears first in the data.
    assert ranked.keys() == [("Bus",), ("Subway",), ("Streetcar",)]


def test_reorder_is_idempotent(delays) -> None:
    summary = agg.aggregate(delays, [("vehicle", "incident")], "count")
    once = agg.reorder_by_statistic(summary)
    twice = agg.reorder_by_statistic(once)
    assert once.rows == twice.rows


def test_reorder_does_not_touch_original(delays) -> None:
    summary = agg.aggregate(delays, ["vehicle"], "sum", "delay")
    rows_before = summary.rows
    agg.reorder_by_statistic(summary)
    assert summary.rows == rows_before


def test_order_for_chart_keeps_calendar_order(delays) -> None:
    by_month = agg.aggregate(delays, ["month"], "count")
    assert agg.order_for_chart(by_month).rows == by_month.rows

    by_vehicle = agg.aggregate(delays, ["vehicle"], "sum", "delay")
    assert agg.order_for_chart(by_vehicle).keys() == [("Bus",), ("Streetcar",), ("Subway",)]


def test_head(delays) -> None:
    summary = agg.reorder_by_statistic(agg.aggregate(delays, ["incident"], "sum", "delay"))
    top = summary.head(2)
    assert top.as_dict() == {"Diversion": 175.0, "Mechanical": 128.0}
    assert len(summary) == 7


# -----------------------------------------------------------------------------
# derive_temporal_dimension
# -----------------------------------------------------------------------------


def test_month_keys_follow_calendar_order(delays) -> None:
    """Months come out January to December even when rows are shuffled."""
    shuffled = delays.sample(frac=1.0, random_state=7).reset_index(drop=True)
    derived = agg.derive_temporal_dimension(shuffled, "month")
    summary = agg.aggregate(derived, ["month"], "count")

    assert [k[0] for k in summary.keys()] == list(agg.MONTH_ORDER)
    assert summary.as_dict()["January"] == 4
    assert summary.as_dict()["February"] == 4
    assert summary.as_dict()["July"] == 2


def test_month_is_ordered_categorical(three_rows) -> None:
    derived = agg.derive_temporal_dimension(three_rows, "month")
    assert derived["month"].cat.ordered
    assert list(derived["month"].cat.categories) == list(agg.MONTH_ORDER)
    assert "month" not in three_rows.columns


def test_day_of_week_is_monday_first(delays) -> None:
    summary = agg.aggregate(delays.iloc[::-1], ["day_of_week"], "count")
    assert [k[0] for k in summary.keys()] == list(agg.DAY_ORDER)
    assert summary.values() == [4, 7, 3, 6, 1, 2, 5]


def test_day_of_week_matches_day_column(delays) -> None:
    derived = agg.derive_temporal_dimension(delays, "day_of_week")
    assert (derived["day_of_week"].astype(str) == derived["day"]).all()


def test_month_truncated_date_keeps_years_apart(delays) -> None:
    summary = agg.aggregate(delays, ["month_truncated_date"], "count")
    keys = [k[0] for k in summary.keys()]

    assert len(keys) == 14
    assert keys == sorted(keys)
    assert keys[0] == pd.Timestamp("2019-01-01")
    assert pd.Timestamp("2019-02-01") in keys
    assert pd.Timestamp("2020-02-01") in keys


def test_month_vehicle_sorted_by_month_then_first_seen(delays) -> None:
    summary = agg.aggregate(delays, [("month", "vehicle")], "count")
    months = [k[0] for k in summary.keys()]

    assert months == sorted(months, key=agg.MONTH_ORDER.index)
    january = [k for k in summary.keys() if k[0] == "January"]
    assert january == [("January", "Bus"), ("January", "Subway")]
    assert summary.as_dict()[("January", "Bus")] == 2


def test_unknown_granularity_raises(three_rows) -> None:
    with pytest.raises(agg.UnsupportedDimensionError):
        agg.derive_temporal_dimension(three_rows, "quarter")


def test_missing_date_column_raises(three_rows) -> None:
    with pytest.raises(agg.SchemaError):
        agg.derive_temporal_dimension(three_rows.drop(columns=["date"]), "month")


def test_unparseable_date_raises(three_rows) -> None:
    bad = three_rows.assign(date=["2020-01-06", "not a date", "2020-01-08"])
    with pytest.raises(agg.InvalidObservationError):
        agg.derive_temporal_dimension(bad, "day_of_week")
