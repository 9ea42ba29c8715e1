"""
Shared helpers for the metric calculators: explicit joins, roll-ups, safe
ratios and result table construction.
"""

import numbers
from collections.abc import Callable, Iterable

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc

from ..io._io_utils import REGION_COL, SUBMISSION_COLUMNS, YEAR_COL, _validate_columns

ALL_LABEL = "All"

# Dimensions collapsed at each roll-up level, in output order
ROLLUP_LEVELS: list[tuple[str, ...]] = [
    (),
    (REGION_COL,),
    (YEAR_COL,),
    (REGION_COL, YEAR_COL),
]

RESULT_KEY_COLUMNS = SUBMISSION_COLUMNS + [REGION_COL, YEAR_COL]


def _validate_tolerance(tolerance) -> int | float:
    if isinstance(tolerance, bool) or not isinstance(tolerance, numbers.Real):
        raise TypeError("tolerance must be a number.")
    if tolerance < 0 or np.isnan(tolerance):
        raise ValueError("tolerance must be a non-negative number.")
    return tolerance


def _require_table(table, name: str, required_cols: list[str]) -> None:
    if not isinstance(table, pa.Table):
        raise TypeError(f"Input '{name}' must be a PyArrow Table, got {type(table).__name__}.")
    _validate_columns(table, required_cols, name)


def _explicit_join(
    left: pd.DataFrame,
    right: pd.DataFrame,
    on: list[str],
    fill_values: dict[str, object],
) -> pd.DataFrame:
    """
    Left-joins `right` onto `left` and fills the listed columns of `right`
    where no key matched. Every column in `fill_values` must come from `right`.

    Rows of `left` are never dropped or duplicated; `right` must be unique on `on`.
    """
    joined = left.merge(right, on=on, how="left", sort=False, validate="many_to_one")
    for col, value in fill_values.items():
        joined[col] = joined[col].fillna(value)
        if isinstance(value, int | np.integer):
            joined[col] = joined[col].astype("int64")
    return joined


def _cross_join(left: pd.DataFrame, right: pd.DataFrame) -> pd.DataFrame:
    return left.merge(right, how="cross")


def _distinct_submissions(*frames: pd.DataFrame) -> pd.DataFrame:
    """Distinct (group_id, method, data_source) triples, in order of first appearance."""
    parts = [frame[SUBMISSION_COLUMNS] for frame in frames if not frame.empty]
    if not parts:
        return pd.DataFrame({col: pd.Series(dtype=str) for col in SUBMISSION_COLUMNS})
    return pd.concat(parts, ignore_index=True).drop_duplicates().reset_index(drop=True)


def _years_as_labels(df: pd.DataFrame) -> pd.DataFrame:
    """Years become strings so 'All' roll-up rows share the column."""
    out = df.copy()
    out[YEAR_COL] = out[YEAR_COL].astype("int64").astype(str)
    return out


def _collapse(df: pd.DataFrame, dims: Iterable[str]) -> pd.DataFrame:
    """Returns a copy of `df` with each dimension in `dims` relabelled 'All'."""
    out = df.copy()
    for dim in dims:
        out[dim] = ALL_LABEL
    return out


def _rollup_sums(df: pd.DataFrame, value_cols: list[str]) -> pd.DataFrame:
    """
    Sums `value_cols` per submission, region and year, once per roll-up level.

    The first level is the plain per-region/per-year partition; the others
    collapse region, year and both into 'All'. Sums are always taken over the
    un-aggregated input rows.
    """
    if df.empty:
        return df[RESULT_KEY_COLUMNS + value_cols].iloc[0:0]
    frames = []
    for dims in ROLLUP_LEVELS:
        summed = (
            _collapse(df, dims)
            .groupby(RESULT_KEY_COLUMNS, sort=False, as_index=False)[value_cols]
            .sum()
        )
        frames.append(summed)
    return pd.concat(frames, ignore_index=True)


def _rollup_apply(
    df: pd.DataFrame,
    metric_func: Callable[[pd.DataFrame], dict],
) -> list[dict]:
    """
    Applies `metric_func` to the raw rows of every partition at every roll-up
    level and returns one record per partition.
    """
    records: list[dict] = []
    if df.empty:
        return records
    for dims in ROLLUP_LEVELS:
        collapsed = _collapse(df, dims)
        for keys, group in collapsed.groupby(RESULT_KEY_COLUMNS, sort=False):
            record = dict(zip(RESULT_KEY_COLUMNS, keys))
            record.update(metric_func(group))
            records.append(record)
    return records


def _safe_ratio(
    numerator: np.ndarray,
    denominator: np.ndarray,
    zero_value: float = np.nan,
) -> np.ndarray:
    """Element-wise ratio with `zero_value` wherever the denominator is 0."""
    numerator = np.asarray(numerator, dtype=float)
    denominator = np.asarray(denominator, dtype=float)
    out = np.full(numerator.shape, zero_value, dtype=float)
    np.divide(numerator, denominator, out=out, where=denominator != 0)
    return out


def _round_float_columns(table: pa.Table, decimal_places: int | None) -> pa.Table:
    """Rounds every float64 column of `table`, preserving schema metadata."""
    if decimal_places is None:
        return table
    columns = []
    for field, column in zip(table.schema, table.columns):
        if pa.types.is_floating(field.type):
            column = pc.round(column, ndigits=decimal_places)
        columns.append(column)
    return pa.table(columns, schema=table.schema)


def _table_from_records(records: list[dict], schema: pa.Schema) -> pa.Table:
    try:
        return pa.Table.from_pylist(records, schema=schema)
    except Exception as e:
        raise RuntimeError(
            f"Failed to create result PyArrow Table: {e}\nRecords sample: {records[:5]}"
        ) from e


def _count_rows(df: pd.DataFrame, keys: list[str], name: str) -> pd.DataFrame:
    """Row counts per key combination, keeping key dtypes when `df` is empty."""
    if df.empty:
        out = df[keys].iloc[0:0].copy()
        out[name] = pd.Series(dtype="int64")
        return out
    return df.groupby(keys, sort=False).size().rename(name).reset_index()
