"""
Internal core IO operations: loading, record normalisation and cleaning rules.
"""

import os
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.csv as pv
import pyarrow.parquet as pq

from ._io_utils import DOY_COL, REGION_COL, UNIT_COL, YEAR_COL


def _load_data_to_pyarrow(
    source: str | Path | pd.DataFrame | pa.Table,
    resolved_source_type: str | None,
    read_options: dict[str, Any],
) -> tuple[pa.Table, str]:
    """
    Loads data from various sources into a PyArrow Table.

    Handles detection of source type if not provided and uses appropriate
    PyArrow readers.

    Args:
        source: Path to a CSV/Parquet file, a Pandas DataFrame or a PyArrow Table.
        resolved_source_type: Explicit source type ('csv', 'parquet', 'pandas',
                              'arrow') or None.
        read_options: Dictionary containing specific read options for PyArrow readers.

    Returns:
        A tuple containing:
            - The loaded PyArrow Table.
            - The resolved source type string.

    Raises:
        FileNotFoundError: If the source path does not exist.
        ValueError: If source type is invalid or conversion fails.
        TypeError: If the source type is unsupported or cannot be inferred.
    """
    table: pa.Table | None = None

    if isinstance(source, pa.Table):
        if resolved_source_type not in (None, "arrow"):
            raise ValueError(
                f"Source is a PyArrow Table, but source_type is '{resolved_source_type}'"
            )
        return source, "arrow"

    if isinstance(source, pd.DataFrame):
        if resolved_source_type is None:
            resolved_source_type = "pandas"
        elif resolved_source_type != "pandas":
            raise ValueError(
                f"Source is a DataFrame, but source_type is '{resolved_source_type}'"
            )
        try:
            table = pa.Table.from_pandas(source, preserve_index=False)
        except Exception as e:
            raise ValueError(
                f"Failed to convert Pandas DataFrame to PyArrow Table: {e}"
            ) from e

    elif isinstance(source, str | Path):
        source = str(source)
        if not os.path.exists(source):
            raise FileNotFoundError(f"Source file not found: {source}")

        if resolved_source_type is None:
            _, ext = os.path.splitext(source)
            ext = ext.lower()
            if ext == ".csv":
                resolved_source_type = "csv"
            elif ext == ".parquet":
                resolved_source_type = "parquet"
            else:
                raise TypeError(
                    f"Cannot infer source type from file extension: {ext}. Please specify source_type."
                )

        if resolved_source_type == "csv":
            try:
                csv_opts = read_options.get("csv", {})
                table = pv.read_csv(source, **csv_opts)
            except Exception as e:
                raise ValueError(
                    f"Failed to read CSV file '{source}' with PyArrow: {e}"
                ) from e
        elif resolved_source_type == "parquet":
            try:
                pq_opts = read_options.get("parquet", {})
                table = pq.read_table(source, **pq_opts)
            except Exception as e:
                raise ValueError(
                    f"Failed to read Parquet file '{source}' with PyArrow: {e}"
                ) from e
        else:
            raise TypeError(
                f"Unsupported source_type for file path: '{resolved_source_type}'"
            )

    else:
        raise TypeError(
            f"Unsupported source type: {type(source)}. Must be a file path, "
            "a Pandas DataFrame or a PyArrow Table."
        )

    if table is None:
        raise ValueError("Failed to load data into PyArrow Table.")

    return table, resolved_source_type


######################
# Value normalisation #
######################


def _is_missing(raw: pd.Series) -> pd.Series:
    """Null values and blank strings count as missing."""
    missing = raw.isna()
    if raw.dtype == object or pd.api.types.is_string_dtype(raw):
        missing |= raw.astype(str).str.strip() == ""
    return missing


def _parse_integer(raw: pd.Series) -> pd.Series:
    """Parses whole numbers; anything else becomes NaN."""
    numeric = pd.to_numeric(raw, errors="coerce")
    return numeric.where(np.isclose(numeric % 1, 0))


def _parse_day_of_year(raw: pd.Series) -> tuple[pd.Series, pd.Series]:
    """
    Converts a date column to day of year.

    Whole numbers from 1 to 366 are taken as day-of-year already. Other
    values are read as calendar dates: datetime values, ISO 'YYYY-MM-DD'
    strings or compact 'YYYYMMDD' strings and numbers. Anything else
    becomes NaN.

    Returns:
        A tuple of (day of year, calendar year of the date). The year is NaN
        where the value was already a day of year.
    """
    if pd.api.types.is_datetime64_any_dtype(raw):
        return raw.dt.dayofyear.astype("float64"), raw.dt.year.astype("float64")

    doy = _parse_integer(raw)
    date_year = pd.Series(np.nan, index=raw.index)
    needs_date = ~doy.between(1, 366) & ~_is_missing(raw)
    doy = doy.where(~needs_date)
    if needs_date.any():
        # whole-number floats print as '20210410.0'
        text = raw[needs_date].astype(str).str.strip().str.replace(r"\.0+$", "", regex=True)
        compact = text.str.fullmatch(r"\d{8}")
        parsed = pd.to_datetime(text.where(compact), errors="coerce", format="%Y%m%d").fillna(
            pd.to_datetime(text.where(~compact), errors="coerce", format="ISO8601")
        )
        doy.loc[needs_date] = parsed.dt.dayofyear.astype("float64")
        date_year.loc[needs_date] = parsed.dt.year.astype("float64")
    return doy, date_year


def _to_key_strings(raw: pd.Series) -> pd.Series:
    """Casts identifier columns to strings so keys compare across tables."""
    if pd.api.types.is_float_dtype(raw):
        as_int = _parse_integer(raw)
        if as_int.notna().sum() == raw.notna().sum():
            return as_int.astype("Int64").astype(str)
    return raw.astype(str).str.strip()


def _normalise_records(
    df: pd.DataFrame,
    columns: list[str],
) -> tuple[pd.DataFrame, int, int]:
    """
    Keeps `columns`, drops rows with missing or malformed values and casts
    every column to its canonical type.

    Returns:
        A tuple of (clean frame, number of rows with a missing field,
        number of rows with a present but unparseable year or date, or a
        calendar date outside the row's year).
    """
    df = df[columns]
    missing = pd.Series(False, index=df.index)
    for col in columns:
        missing |= _is_missing(df[col])

    year = _parse_integer(df[YEAR_COL])
    doy, date_year = _parse_day_of_year(df[DOY_COL])
    # a calendar date must fall in the row's own year
    wrong_year = date_year.notna() & (date_year != year)
    malformed = ~missing & (year.isna() | doy.isna() | wrong_year)

    keep = ~missing & ~malformed
    out = pd.DataFrame(index=df.index[keep])
    for col in columns:
        if col == YEAR_COL:
            out[col] = year[keep].astype("int64")
        elif col == DOY_COL:
            out[col] = doy[keep].astype("int64")
        else:
            out[col] = _to_key_strings(df.loc[keep, col])

    return out.reset_index(drop=True), int(missing.sum()), int(malformed.sum())


#################
# Cleaning rules #
#################


def _filter_valid_range(df: pd.DataFrame, valid_range: tuple[int, int]) -> pd.DataFrame:
    low, high = valid_range
    return df[df[DOY_COL].between(low, high)].reset_index(drop=True)


def _find_close_event_groups(df: pd.DataFrame, min_difference: int) -> pd.DataFrame:
    """
    Pass 1 of the spacing rule: returns the distinct (unit_id, year) keys whose
    date-sorted events contain an adjacent pair closer than `min_difference` days.
    """
    ordered = df.sort_values([UNIT_COL, YEAR_COL, DOY_COL], kind="mergesort")
    gaps = ordered.groupby([UNIT_COL, YEAR_COL], sort=False)[DOY_COL].diff()
    return ordered.loc[gaps < min_difference, [UNIT_COL, YEAR_COL]].drop_duplicates()


def _drop_groups(df: pd.DataFrame, keys: pd.DataFrame, key_cols: list[str]) -> pd.DataFrame:
    """Pass 2 of the spacing rule: removes every row belonging to `keys`."""
    if keys.empty:
        return df
    in_keys = pd.MultiIndex.from_frame(df[key_cols]).isin(
        pd.MultiIndex.from_frame(keys[key_cols])
    )
    return df[~in_keys].reset_index(drop=True)


def _keep_groups(df: pd.DataFrame, keys: pd.DataFrame, key_cols: list[str]) -> pd.DataFrame:
    """Semi-join: keeps only rows whose `key_cols` appear in `keys`."""
    if df.empty:
        return df
    if keys.empty:
        return df.iloc[0:0].reset_index(drop=True)
    in_keys = pd.MultiIndex.from_frame(df[key_cols]).isin(
        pd.MultiIndex.from_frame(keys[key_cols].drop_duplicates())
    )
    return df[in_keys].reset_index(drop=True)


def _region_year_pairs(df: pd.DataFrame) -> pd.DataFrame:
    return df[[REGION_COL, YEAR_COL]].drop_duplicates().reset_index(drop=True)
