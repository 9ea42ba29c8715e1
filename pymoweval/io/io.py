import logging
from pathlib import Path
from typing import Any

import pandas as pd
import pyarrow as pa
import pyarrow.csv as pv
import pyarrow.parquet as pq

from ..config import MowingSettings, resolve_setting
from ..errors import MalformedRecordWarning, emit_warning
from ._io_core import (
    _drop_groups,
    _filter_valid_range,
    _find_close_event_groups,
    _keep_groups,
    _load_data_to_pyarrow,
    _normalise_records,
    _region_year_pairs,
)
from ._io_utils import (
    PREDICTION_COLUMNS,
    PREDICTION_SCHEMA,
    REFERENCE_COLUMNS,
    REFERENCE_SCHEMA,
    REGION_COL,
    TABLE_KIND_PREDICTIONS,
    TABLE_KIND_REFERENCE,
    UNIT_COL,
    YEAR_COL,
    _apply_column_map,
    _attach_metadata,
    _validate_columns,
    get_warnings,
)

logger = logging.getLogger(__name__)


def _check_range(valid_range: tuple[int, int]) -> tuple[int, int]:
    if not isinstance(valid_range, list | tuple) or len(valid_range) != 2:
        raise TypeError("valid_range must be a (low, high) pair of integers.")
    low, high = int(valid_range[0]), int(valid_range[1])
    if low > high:
        raise ValueError(f"valid_range lower bound ({low}) is greater than upper bound ({high}).")
    return low, high


def _report_dropped_rows(
    table_kind: str,
    n_missing: int,
    n_malformed: int,
    collected: list[str],
    verbosity: int,
) -> None:
    if n_malformed > 0:
        emit_warning(
            f"Dropped {n_malformed} malformed {table_kind} row(s) with an unparseable year "
            "or date, or a date outside the row's year.",
            MalformedRecordWarning,
            collected,
            logger,
            verbosity,
        )
    if n_missing > 0 and verbosity <= -1:
        logger.info(f"Dropped {n_missing} {table_kind} row(s) with a missing field.")


def clean_reference(
    table: pa.Table,
    valid_range: tuple[int, int] | None = None,
    min_difference: int | None = None,
    settings: MowingSettings | None = None,
    verbosity: int = 0,
) -> pa.Table:
    """
    Cleans a reference event table that already uses the canonical column names.

    Rows with missing or unparseable fields are dropped first, then events
    outside `valid_range` are removed. Finally the spacing rule is applied in
    two passes: every (unit_id, year) group whose date-sorted events contain
    two consecutive events less than `min_difference` days apart is
    identified, then all rows of those groups are removed (not only the close
    pair). Cleaning an already cleaned table returns the same rows.

    Args:
        table: PyArrow Table with columns unit_id, region, year, doy.
        valid_range: Inclusive (low, high) day-of-year interval. Defaults to
                     the configured `valid_mowing_range`.
        min_difference: Minimum spacing in days between consecutive events of
                        one unit and year. Defaults to the configured
                        `event_min_difference`.
        settings: Optional settings object; the process-wide settings are used
                  when None.
        verbosity: Controls logging and warnings (<= -1 INFO, 0 WARNING, >= 1 silent).

    Returns:
        A new PyArrow Table with the reference schema. Cleaning statistics and
        warnings are stored in the schema metadata.

    Raises:
        TypeError: If `table` is not a PyArrow Table.
        SchemaViolationError: If a required column is missing.
    """
    if not isinstance(table, pa.Table):
        raise TypeError(f"Expected a pyarrow.Table, got {type(table).__name__}")
    valid_range = _check_range(resolve_setting(valid_range, settings, "valid_mowing_range"))
    min_difference = resolve_setting(min_difference, settings, "event_min_difference")
    if min_difference < 0:
        raise ValueError("min_difference must be non-negative.")

    _validate_columns(table, REFERENCE_COLUMNS, TABLE_KIND_REFERENCE)
    collected = get_warnings(table)

    df, n_missing, n_malformed = _normalise_records(table.to_pandas(), REFERENCE_COLUMNS)
    _report_dropped_rows(TABLE_KIND_REFERENCE, n_missing, n_malformed, collected, verbosity)

    n_before_range = len(df)
    df = _filter_valid_range(df, valid_range)
    n_out_of_range = n_before_range - len(df)

    close_groups = _find_close_event_groups(df, min_difference)
    n_before_spacing = len(df)
    df = _drop_groups(df, close_groups, [UNIT_COL, YEAR_COL])
    n_spacing = n_before_spacing - len(df)

    stats = {
        "n_input": table.num_rows,
        "n_missing": n_missing,
        "n_malformed": n_malformed,
        "n_out_of_range": n_out_of_range,
        "n_spacing_groups": len(close_groups),
        "n_spacing_violations": n_spacing,
        "n_output": len(df),
    }
    if verbosity <= -1:
        logger.info(
            f"Reference cleaning: {stats['n_input']} rows in, {n_out_of_range} outside "
            f"{valid_range}, {len(close_groups)} unit/year group(s) ({n_spacing} rows) removed "
            f"for events closer than {min_difference} days, {len(df)} rows kept."
        )

    cleaned = pa.Table.from_pandas(df, schema=REFERENCE_SCHEMA, preserve_index=False)
    return _attach_metadata(
        cleaned,
        table_kind=TABLE_KIND_REFERENCE,
        cleaning_stats=stats,
        warning_messages=collected,
    )


def clean_predictions(
    table: pa.Table,
    reference: pa.Table,
    valid_range: tuple[int, int] | None = None,
    settings: MowingSettings | None = None,
    verbosity: int = 0,
) -> pa.Table:
    """
    Cleans a predicted event table that already uses the canonical column names.

    Rows with missing or unparseable fields are dropped, exact duplicates are
    collapsed, events outside `valid_range` are removed and only (region, year)
    combinations present in the cleaned `reference` table are kept.

    Args:
        table: PyArrow Table with columns group_id, method, data_source, region,
               unit_id, year, doy.
        reference: The cleaned reference table (see `clean_reference`).
        valid_range: Inclusive (low, high) day-of-year interval. Defaults to
                     the configured `valid_mowing_range`.
        settings: Optional settings object.
        verbosity: Controls logging and warnings.

    Returns:
        A new PyArrow Table with the prediction schema, with cleaning
        statistics and warnings in the schema metadata.
    """
    if not isinstance(table, pa.Table):
        raise TypeError(f"Expected a pyarrow.Table, got {type(table).__name__}")
    if not isinstance(reference, pa.Table):
        raise TypeError(f"Expected reference to be a pyarrow.Table, got {type(reference).__name__}")
    valid_range = _check_range(resolve_setting(valid_range, settings, "valid_mowing_range"))

    _validate_columns(table, PREDICTION_COLUMNS, TABLE_KIND_PREDICTIONS)
    _validate_columns(reference, [REGION_COL, YEAR_COL], TABLE_KIND_REFERENCE)
    collected = get_warnings(table)

    df, n_missing, n_malformed = _normalise_records(table.to_pandas(), PREDICTION_COLUMNS)
    _report_dropped_rows(TABLE_KIND_PREDICTIONS, n_missing, n_malformed, collected, verbosity)

    n_before_dedup = len(df)
    df = df.drop_duplicates().reset_index(drop=True)
    n_duplicates = n_before_dedup - len(df)

    n_before_range = len(df)
    df = _filter_valid_range(df, valid_range)
    n_out_of_range = n_before_range - len(df)

    reference_pairs = _region_year_pairs(
        reference.select([REGION_COL, YEAR_COL]).to_pandas()
    )
    n_before_join = len(df)
    df = _keep_groups(df, reference_pairs, [REGION_COL, YEAR_COL])
    n_excluded = n_before_join - len(df)

    stats = {
        "n_input": table.num_rows,
        "n_missing": n_missing,
        "n_malformed": n_malformed,
        "n_duplicates": n_duplicates,
        "n_out_of_range": n_out_of_range,
        "n_region_year_excluded": n_excluded,
        "n_output": len(df),
    }
    if verbosity <= -1:
        logger.info(
            f"Prediction cleaning: {stats['n_input']} rows in, {n_duplicates} duplicates, "
            f"{n_out_of_range} outside {valid_range}, {n_excluded} in region/year "
            f"combinations absent from the reference, {len(df)} rows kept."
        )

    cleaned = pa.Table.from_pandas(df, schema=PREDICTION_SCHEMA, preserve_index=False)
    return _attach_metadata(
        cleaned,
        table_kind=TABLE_KIND_PREDICTIONS,
        cleaning_stats=stats,
        warning_messages=collected,
    )


def load_reference(
    source: str | Path | pd.DataFrame | pa.Table,
    valid_range: tuple[int, int] | None = None,
    min_difference: int | None = None,
    column_map: dict[str, str] | None = None,
    source_type: str | None = None,
    read_options: dict[str, Any] | None = None,
    settings: MowingSettings | None = None,
    verbosity: int = 0,
) -> pa.Table:
    """
    Loads and cleans reference (ground truth) mowing events.

    Args:
        source: Path to a CSV/Parquet file, a Pandas DataFrame or a PyArrow Table.
        valid_range: Inclusive (low, high) day-of-year interval of the mowing
                     season. Defaults to the configured value ([75, 300]).
        min_difference: Minimum spacing between consecutive events of one
                        unit and year. Defaults to the configured value (15).
        column_map: Optional mapping of source column names to the canonical
                    names unit_id, region, year, doy.
        source_type: Optional hint for the source type ('csv', 'parquet',
                     'pandas', 'arrow'). Inferred when None.
        read_options: Optional reader options keyed by source type, e.g.
                      {'csv': {'parse_options': ...}}.
        settings: Optional settings object.
        verbosity: Controls logging and warnings.

    Returns:
        The cleaned reference table (see `clean_reference`).

    Raises:
        FileNotFoundError: If the source path does not exist.
        SchemaViolationError: If required columns are missing.
        TypeError: If the source type is unsupported or cannot be inferred.
        ValueError: If reading the source fails.
    """
    if read_options is None:
        read_options = {}

    table, resolved_source_type = _load_data_to_pyarrow(
        source=source,
        resolved_source_type=source_type,
        read_options=read_options,
    )
    if verbosity <= -1:
        logger.info(f"Loaded {table.num_rows} reference rows from {resolved_source_type} source.")

    table = _apply_column_map(table, column_map)
    return clean_reference(
        table,
        valid_range=valid_range,
        min_difference=min_difference,
        settings=settings,
        verbosity=verbosity,
    )


def load_predictions(
    source: str | Path | pd.DataFrame | pa.Table,
    reference: pa.Table,
    valid_range: tuple[int, int] | None = None,
    column_map: dict[str, str] | None = None,
    source_type: str | None = None,
    read_options: dict[str, Any] | None = None,
    settings: MowingSettings | None = None,
    verbosity: int = 0,
) -> pa.Table:
    """
    Loads and cleans predicted mowing events submitted by one or more groups.

    Args:
        source: Path to a CSV/Parquet file, a Pandas DataFrame or a PyArrow Table.
        reference: The cleaned reference table; only its (region, year)
                   combinations are kept in the predictions.
        valid_range: Inclusive (low, high) day-of-year interval. Defaults to
                     the configured value.
        column_map: Optional mapping of source column names to the canonical
                    names group_id, method, data_source, region, unit_id,
                    year, doy.
        source_type: Optional hint for the source type.
        read_options: Optional reader options keyed by source type.
        settings: Optional settings object.
        verbosity: Controls logging and warnings.

    Returns:
        The cleaned prediction table (see `clean_predictions`).

    Raises:
        FileNotFoundError: If the source path does not exist.
        SchemaViolationError: If required columns are missing.
        TypeError: If the source type is unsupported or cannot be inferred.
        ValueError: If reading the source fails.
    """
    if read_options is None:
        read_options = {}

    table, resolved_source_type = _load_data_to_pyarrow(
        source=source,
        resolved_source_type=source_type,
        read_options=read_options,
    )
    if verbosity <= -1:
        logger.info(f"Loaded {table.num_rows} prediction rows from {resolved_source_type} source.")

    table = _apply_column_map(table, column_map)
    return clean_predictions(
        table,
        reference,
        valid_range=valid_range,
        settings=settings,
        verbosity=verbosity,
    )


def export_evaluation_results(
    results_table: pa.Table,
    output_path: str | Path | None = None,
    format: str = "dataframe",
    **kwargs: Any,
) -> pd.DataFrame | None:
    """
    Exports a result table (accuracy, regression, count deviation or matches)
    to different formats.

    Prioritizes native PyArrow writers for CSV and Parquet formats. Parquet
    output keeps the schema metadata, including accumulated warnings.

    Args:
        results_table: The PyArrow Table to export.
        output_path: The file path to write to. Required for 'csv' and 'parquet'
                     formats. Ignored for 'dataframe' format.
        format: The desired output format. Options: 'csv', 'parquet', 'dataframe'.
                Defaults to 'dataframe'.
        **kwargs: Additional keyword arguments passed to the underlying writer.
                  For 'csv': `write_options` (dict for pyarrow.csv.WriteOptions).
                  For 'parquet': pyarrow.parquet.write_table options.
                  For 'dataframe': pyarrow.Table.to_pandas options.

    Returns:
        A Pandas DataFrame for format 'dataframe', otherwise None.

    Raises:
        TypeError: If `results_table` is not a PyArrow Table.
        ValueError: If `format` is invalid or `output_path` is missing.
    """
    if not isinstance(results_table, pa.Table):
        raise TypeError(
            f"Expected results_table to be a pyarrow.Table, got {type(results_table).__name__}"
        )

    valid_formats = ["dataframe", "csv", "parquet"]
    if format not in valid_formats:
        raise ValueError(f"Invalid format '{format}'. Must be one of {valid_formats}")

    if format in ["csv", "parquet"] and output_path is None:
        raise ValueError(f"output_path must be provided for format '{format}'")

    if format == "dataframe":
        return results_table.to_pandas(**kwargs)
    elif format == "csv":
        write_options_dict = kwargs.pop("write_options", {})
        write_options = pv.WriteOptions(**write_options_dict)
        pv.write_csv(results_table, str(output_path), write_options=write_options, **kwargs)
        return None
    else:
        pq.write_table(results_table, str(output_path), **kwargs)
        return None
