"""Build the transit delay report: summary tables, charts, and a Markdown write-up.

Reads the cleaned delay CSV (date, day, vehicle, location, incident, delay),
runs one aggregation per chart definition in CHARTS, and writes:
    - <slug>.csv            one summary table per chart
    - plots/<slug>.png      bar or line chart per summary table
    - delay_report.md       narrative text interleaved with the charts

Each chart is a thin configuration (group_by + statistic + chart kind).
Ordering is the same for every chart: categorical charts are ranked by value,
largest first, and calendar charts (day of week, month, month start) keep
chronological order.

If any summary table cannot be computed, the failing chart request is logged
and the run stops before anything is written.

Usage:
    python -m scripts.delay_tools.delay_report --input delays.csv --outdir out/
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import matplotlib.dates as mdates
import matplotlib.pyplot as plt
import pandas as pd

from scripts.delay_tools.delay_aggregation import (
    AggregationError,
    SummaryTable,
    aggregate,
    order_for_chart,
)
from scripts.delay_tools.delay_data_loader import load_delay_table
from scripts.utils.logging_helper import setup_logging

# =============================================================================
# CONFIGURATION
# =============================================================================

INPUT_CSV: Final[Path] = Path(r"Path\To\Your\ttc_delays_cleaned.csv")
OUTPUT_DIR: Final[Path] = Path(r"Path\To\Your\Output_Folder")

REPORT_FILENAME: Final[str] = "delay_report.md"
REPORT_TITLE: Final[str] = "Delays on the Toronto Transit Commission network"

# Rows listed under each chart in the Markdown report.
REPORT_PREVIEW_ROWS: Final[int] = 5

WRITE_PLOTS: Final[bool] = True

# Logging level (INFO recommended; DEBUG shows every aggregation call).
LOG_LEVEL: Final[str] = "INFO"

PLOT_STYLE: Final[dict[str, Any]] = {
    "figsize": (10, 5),
    "marker": "o",
    "linestyle": "-",
    "grid": True,
    "rotation": 45,
    "dpi": 150,
    "bar_color": "#3b6ea5",
}


@dataclass(frozen=True)
class ChartSpec:
    """One chart in the report and the aggregation that feeds it."""

    slug: str
    title: str
    group_by: tuple[str | tuple[str, ...], ...]
    statistic: str
    ylabel: str
    narrative: str
    value_column: str | None = None
    kind: str = "bar"  # "bar" | "line"
    limit: int | None = None  # keep the first N rows after ordering


# Narrative order of the report.
CHARTS: Final[list[ChartSpec]] = [
    ChartSpec(
        slug="delay_count_by_vehicle",
        title="Number of delays by vehicle type",
        group_by=("vehicle",),
        statistic="count",
        ylabel="Delays",
        narrative=(
            "Buses account for most recorded delay events, which follows from the size "
            "of the bus network relative to the streetcar and subway systems."
        ),
    ),
    ChartSpec(
        slug="total_delay_by_vehicle",
        title="Total delay by vehicle type",
        group_by=("vehicle",),
        statistic="sum",
        value_column="delay",
        ylabel="Total delay (minutes)",
        narrative="Summing delay minutes shows how much lost time each mode contributes.",
    ),
    ChartSpec(
        slug="mean_delay_by_vehicle",
        title="Average delay by vehicle type",
        group_by=("vehicle",),
        statistic="mean",
        value_column="delay",
        ylabel="Mean delay (minutes)",
        narrative=(
            "A typical delay is a different size on each mode, so frequency and "
            "severity tell different stories."
        ),
    ),
    ChartSpec(
        slug="top_incidents_by_total_delay",
        title="Incident types with the most total delay",
        group_by=("incident",),
        statistic="sum",
        value_column="delay",
        ylabel="Total delay (minutes)",
        limit=10,
        narrative="Ranking incident types by total delay shows which causes dominate lost time.",
    ),
    ChartSpec(
        slug="top_vehicle_incidents_by_count",
        title="Most frequent incident types per vehicle",
        group_by=(("vehicle", "incident"),),
        statistic="count",
        ylabel="Delays",
        limit=15,
        narrative=(
            "Each mode draws its incidents from its own recurring set of causes. "
            "The most frequent vehicle and incident pairs are shown below."
        ),
    ),
    ChartSpec(
        slug="delay_count_by_day_of_week",
        title="Delays by day of the week",
        group_by=("day_of_week",),
        statistic="count",
        ylabel="Delays",
        narrative="Weekdays carry more service and record more delays than weekends.",
    ),
    ChartSpec(
        slug="delay_count_by_month",
        title="Delays by month of the year",
        group_by=("month",),
        statistic="count",
        ylabel="Delays",
        narrative="Months are shown in calendar order to expose seasonal patterns.",
    ),
    ChartSpec(
        slug="monthly_delay_count_by_vehicle",
        title="Delays by month and vehicle type",
        group_by=(("month", "vehicle"),),
        statistic="count",
        ylabel="Delays",
        kind="line",
        narrative="Splitting the monthly counts by mode shows whether seasonality is shared.",
    ),
    ChartSpec(
        slug="total_delay_over_time",
        title="Total delay per calendar month",
        group_by=("month_truncated_date",),
        statistic="sum",
        value_column="delay",
        ylabel="Total delay (minutes)",
        kind="line",
        narrative="Month-start buckets keep each year separate, giving the long-run trend.",
    ),
]

# =============================================================================
# HELPERS
# =============================================================================


def format_key_part(value: Any) -> str:
    """Format one group-key component for axis labels and text."""
    if isinstance(value, pd.Timestamp):
        return value.strftime("%b-%Y")
    return str(value)


def format_key(key: tuple[Any, ...]) -> str:
    return " / ".join(format_key_part(v) for v in key)


def format_value(summary: SummaryTable, value: float) -> str:
    if summary.statistic == "count":
        return f"{int(value):,}"
    return f"{value:,.1f}"


# =============================================================================
# AGGREGATION
# =============================================================================


def build_summary(table: pd.DataFrame, chart: ChartSpec) -> SummaryTable:
    """Run the aggregation for ``chart`` and apply its display ordering."""
    try:
        summary = aggregate(table, list(chart.group_by), chart.statistic, chart.value_column)
    except AggregationError:
        logging.error(
            "Aggregation failed for chart %r (group_by=%s, statistic=%s, value_column=%s)",
            chart.slug,
            list(chart.group_by),
            chart.statistic,
            chart.value_column,
        )
        raise
    summary = order_for_chart(summary)
    if chart.limit is not None:
        summary = summary.head(chart.limit)
    return summary


def build_all_summaries(
    table: pd.DataFrame, charts: list[ChartSpec]
) -> list[tuple[ChartSpec, SummaryTable]]:
    """Compute every chart's summary table, stopping at the first failure."""
    results: list[tuple[ChartSpec, SummaryTable]] = []
    for chart in charts:
        summary = build_summary(table, chart)
        logging.info("Built %s: %d row(s)", chart.slug, len(summary))
        results.append((chart, summary))
    return results


# =============================================================================
# PLOTTING
# =============================================================================


def _plot_bar(summary: SummaryTable) -> None:
    labels = [format_key(k) for k in summary.keys()]
    positions = range(len(labels))
    plt.bar(positions, summary.values(), color=PLOT_STYLE["bar_color"])
    plt.xticks(positions, labels, rotation=PLOT_STYLE["rotation"], ha="right")


def _plot_series_lines(summary: SummaryTable) -> None:
    """One line per value of the second dimension, over the first dimension."""
    x_keys: list[Any] = []
    series: dict[Any, dict[Any, float]] = {}
    for (x_key, series_key, *_), value in summary.rows:
        if x_key not in x_keys:
            x_keys.append(x_key)
        series.setdefault(series_key, {})[x_key] = value

    positions = list(range(len(x_keys)))
    for series_key, points in series.items():
        plt.plot(
            positions,
            [points.get(x, float("nan")) for x in x_keys],
            marker=PLOT_STYLE["marker"],
            linestyle=PLOT_STYLE["linestyle"],
            label=format_key_part(series_key),
        )
    plt.xticks(positions, [format_key_part(x) for x in x_keys], rotation=PLOT_STYLE["rotation"])
    plt.legend()


def _plot_line(summary: SummaryTable) -> None:
    x = [key[0] for key in summary.keys()]
    plt.plot(
        x,
        summary.values(),
        marker=PLOT_STYLE["marker"],
        linestyle=PLOT_STYLE["linestyle"],
    )
    if summary.dimensions[0] == "month_truncated_date":
        plt.gca().xaxis.set_major_formatter(mdates.DateFormatter("%b-%y"))
    plt.xticks(rotation=PLOT_STYLE["rotation"])


def plot_summary(summary: SummaryTable, chart: ChartSpec, out_path: Path) -> None:
    """Render ``summary`` as a bar or line chart PNG at ``out_path``."""
    out_path.parent.mkdir(parents=True, exist_ok=True)

    plt.figure(figsize=PLOT_STYLE["figsize"])
    if chart.kind == "line" and len(summary.dimensions) > 1:
        _plot_series_lines(summary)
    elif chart.kind == "line":
        _plot_line(summary)
    else:
        _plot_bar(summary)

    plt.title(chart.title)
    plt.xlabel(" / ".join(d.replace("_", " ").title() for d in summary.dimensions))
    plt.ylabel(chart.ylabel)
    plt.grid(PLOT_STYLE["grid"], axis="y")
    plt.tight_layout()
    plt.savefig(out_path, dpi=PLOT_STYLE["dpi"])
    plt.close()


# =============================================================================
# REPORT
# =============================================================================


def render_section(chart: ChartSpec, summary: SummaryTable, with_plot: bool) -> str:
    """Return the Markdown section for one chart."""
    lines = [f"## {chart.title}", "", chart.narrative, ""]
    if with_plot:
        lines += [f"![{chart.title}](plots/{chart.slug}.png)", ""]
    for key, value in summary.rows[:REPORT_PREVIEW_ROWS]:
        lines.append(f"- {format_key(key)}: {format_value(summary, value)}")
    lines.append("")
    return "\n".join(lines)


def write_report(
    results: list[tuple[ChartSpec, SummaryTable]],
    output_dir: Path,
    n_observations: int,
    with_plots: bool,
) -> Path:
    """Write the Markdown report and return its path."""
    header = [
        f"# {REPORT_TITLE}",
        "",
        f"Summary of {n_observations:,} recorded delay events.",
        "",
    ]
    body = [render_section(chart, summary, with_plots) for chart, summary in results]
    out_path = output_dir / REPORT_FILENAME
    out_path.write_text("\n".join(header + body), encoding="utf-8")
    return out_path


def export_outputs(
    results: list[tuple[ChartSpec, SummaryTable]], output_dir: Path, with_plots: bool
) -> None:
    """Write one CSV (and optionally one PNG) per summary table."""
    for chart, summary in results:
        summary.to_frame().to_csv(output_dir / f"{chart.slug}.csv", index=False)
        if with_plots:
            plot_summary(summary, chart, output_dir / "plots" / f"{chart.slug}.png")
        logging.info("Exported %s", chart.slug)


def run_report(
    input_path: Path,
    output_dir: Path,
    charts: list[ChartSpec] | None = None,
    with_plots: bool = WRITE_PLOTS,
) -> Path:
    """Load the delay table, build every summary, and write all outputs."""
    table = load_delay_table(input_path)
    results = build_all_summaries(table, CHARTS if charts is None else charts)

    output_dir.mkdir(parents=True, exist_ok=True)
    export_outputs(results, output_dir, with_plots)
    report_path = write_report(results, output_dir, len(table), with_plots)
    logging.info("Report written to: %s", report_path)
    return report_path


# =============================================================================
# MAIN
# =============================================================================


def build_argparser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    p = argparse.ArgumentParser(
        description="Aggregate transit delay observations into charts and a Markdown report."
    )
    p.add_argument("-i", "--input", default=INPUT_CSV, type=Path, help="Cleaned delay CSV.")
    p.add_argument("-d", "--outdir", default=OUTPUT_DIR, type=Path, help="Output folder.")
    p.add_argument(
        "--log-level",
        default=LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    p.add_argument("--no-plots", action="store_true", help="Skip writing chart PNGs.")
    return p


def main() -> None:
    """Run the report from the command line."""
    args = build_argparser().parse_args()
    setup_logging(args.log_level)
    run_report(args.input, args.outdir, with_plots=WRITE_PLOTS and not args.no_plots)


if __name__ == "__main__":
    main()
