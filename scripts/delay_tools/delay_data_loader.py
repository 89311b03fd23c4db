"""Load the cleaned transit delay CSV and check it against the engine contract.

The input is produced by an upstream cleaning step and has exactly six
columns: ``date, day, vehicle, location, incident, delay``. This module does
not clean anything. It reads the file, normalizes headers and types, and
fails loudly if a row breaks the contract the aggregation engine relies on.

Checks:
    - All six columns present (``SchemaError`` otherwise).
    - ``date`` parses for every row.
    - ``delay`` is numeric, present, non-negative, and at most
      ``MAX_DELAY_MINUTES``.
    - ``vehicle`` and ``incident`` are non-null and not blank.

Rows whose ``day`` label disagrees with the weekday of ``date`` are counted
and logged, but left as they are.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Final

import pandas as pd

from scripts.delay_tools.delay_aggregation import (
    DAY_ORDER,
    InvalidObservationError,
    SchemaError,
    check_key_columns,
    check_value_column,
)

# =============================================================================
# CONFIGURATION
# =============================================================================

REQUIRED_COLUMNS: Final[tuple[str, ...]] = (
    "date",
    "day",
    "vehicle",
    "location",
    "incident",
    "delay",
)

# Delays above this are recording errors and are removed upstream.
MAX_DELAY_MINUTES: Final[float] = 998.0

VEHICLE_TYPES: Final[tuple[str, ...]] = ("Bus", "Streetcar", "Subway")

STRING_COLUMNS: Final[tuple[str, ...]] = ("day", "vehicle", "location", "incident")

# =============================================================================
# FUNCTIONS
# =============================================================================


def normalise_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Lower-case and trim column names."""
    out = df.copy()
    out.columns = out.columns.astype(str).str.strip().str.lower()
    return out


def validate_observations(df: pd.DataFrame) -> None:
    """Raise if ``df`` breaks the observation-table contract.

    Args:
        df: Observation table with the six required columns.

    Raises:
        SchemaError: A required column is missing.
        MissingValueColumnError: ``delay`` is not numeric.
        InvalidObservationError: Null vehicle/incident, or a missing, negative,
            non-finite, or out-of-range delay.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise SchemaError(
            f"Delay table is missing required column(s): {', '.join(missing)} "
            f"(found: {', '.join(map(str, df.columns))})"
        )

    check_key_columns(df, ("vehicle", "incident"))
    check_value_column(df, "delay")

    n_over = int((df["delay"] > MAX_DELAY_MINUTES).sum())
    if n_over:
        raise InvalidObservationError(
            f"{n_over} row(s) have a delay above {MAX_DELAY_MINUTES:g} minutes; "
            "these should have been removed upstream"
        )

    unknown = sorted(set(df["vehicle"]) - set(VEHICLE_TYPES))
    if unknown:
        logging.warning("Unexpected vehicle type(s) in input: %s", ", ".join(map(str, unknown)))


def count_day_mismatches(df: pd.DataFrame) -> int:
    """Return the number of rows whose ``day`` label is not the weekday of ``date``."""
    if df.empty:
        return 0
    derived = df["date"].dt.dayofweek.map(lambda d: DAY_ORDER[d])
    labels = df["day"].astype(str).str.strip().str.title()
    return int((labels != derived).sum())


def load_delay_table(path: Path | str) -> pd.DataFrame:
    """Read and validate the cleaned delay CSV at ``path``.

    Returns:
        DataFrame with ``date`` as datetime64, ``delay`` as float, and the
        remaining columns as stripped strings. An input with a header but no
        rows comes back empty; callers decide whether that is fatal.
    """
    path = Path(path)
    logging.info("Reading delay table: %s", path)
    df = pd.read_csv(path, dtype={c: "string" for c in STRING_COLUMNS})
    df = normalise_columns(df)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise SchemaError(f"{path.name}: missing required column(s): {', '.join(missing)}")

    df = df[list(REQUIRED_COLUMNS)].copy()
    for col in STRING_COLUMNS:
        # Whitespace-only cells count as missing.
        stripped = df[col].str.strip().replace("", pd.NA)
        df[col] = stripped.astype(object).where(stripped.notna(), None)

    dates = pd.to_datetime(df["date"], errors="coerce")
    n_bad_dates = int(dates.isna().sum())
    if n_bad_dates:
        raise InvalidObservationError(
            f"{path.name}: {n_bad_dates} row(s) have a missing or unparseable date"
        )
    df["date"] = dates

    delay = pd.to_numeric(df["delay"], errors="coerce")
    n_bad_delay = int(delay.isna().sum() - df["delay"].isna().sum())
    if n_bad_delay:
        raise InvalidObservationError(f"{path.name}: {n_bad_delay} row(s) have a non-numeric delay")
    df["delay"] = delay.astype(float)

    validate_observations(df)

    n_mismatch = count_day_mismatches(df)
    if n_mismatch:
        logging.warning(
            "%d row(s) have a 'day' label that does not match the weekday of 'date'", n_mismatch
        )

    logging.info("Loaded %d observation(s) from %s", len(df), path.name)
    return df
