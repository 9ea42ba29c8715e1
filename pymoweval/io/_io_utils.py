"""
Internal utilities for IO operations, like validation and metadata handling.
"""

import json

import pyarrow as pa

from ..errors import SchemaViolationError

# Canonical column names
UNIT_COL = "unit_id"
REGION_COL = "region"
YEAR_COL = "year"
DOY_COL = "doy"
GROUP_COL = "group_id"
METHOD_COL = "method"
DATA_SOURCE_COL = "data_source"

REFERENCE_COLUMNS = [UNIT_COL, REGION_COL, YEAR_COL, DOY_COL]
PREDICTION_COLUMNS = [
    GROUP_COL,
    METHOD_COL,
    DATA_SOURCE_COL,
    REGION_COL,
    UNIT_COL,
    YEAR_COL,
    DOY_COL,
]
# A submission is one (group, method, data source) triple
SUBMISSION_COLUMNS = [GROUP_COL, METHOD_COL, DATA_SOURCE_COL]

REFERENCE_SCHEMA = pa.schema(
    [
        pa.field(UNIT_COL, pa.string()),
        pa.field(REGION_COL, pa.string()),
        pa.field(YEAR_COL, pa.int64()),
        pa.field(DOY_COL, pa.int64()),
    ]
)
PREDICTION_SCHEMA = pa.schema(
    [
        pa.field(GROUP_COL, pa.string()),
        pa.field(METHOD_COL, pa.string()),
        pa.field(DATA_SOURCE_COL, pa.string()),
        pa.field(REGION_COL, pa.string()),
        pa.field(UNIT_COL, pa.string()),
        pa.field(YEAR_COL, pa.int64()),
        pa.field(DOY_COL, pa.int64()),
    ]
)

# Metadata keys
META_KEY_TABLE_KIND = "pymoweval.io.table_kind"
META_KEY_CLEANING_STATS = "pymoweval.io.cleaning_stats"
META_KEY_WARNINGS = "pymoweval.warnings"

TABLE_KIND_REFERENCE = "reference"
TABLE_KIND_PREDICTIONS = "predictions"


def _validate_columns(
    table: pa.Table,
    required_cols: list[str],
    table_kind: str,
) -> None:
    """
    Validates the existence of the required columns.

    Args:
        table: The PyArrow Table to validate (after any column renaming).
        required_cols: Canonical column names that must be present.
        table_kind: 'reference' or 'predictions', used in the error message.

    Raises:
        SchemaViolationError: If any required column is missing.
    """
    missing_cols = [col for col in required_cols if col not in table.column_names]
    if missing_cols:
        raise SchemaViolationError(
            f"Missing required columns in the {table_kind} data: {missing_cols}. "
            f"Found columns: {table.column_names}. "
            "Use `column_map` to rename source columns to the expected names."
        )


def _apply_column_map(table: pa.Table, column_map: dict[str, str] | None) -> pa.Table:
    """Renames source columns to canonical names according to `column_map`."""
    if not column_map:
        return table
    if not isinstance(column_map, dict):
        raise TypeError("column_map must be a dictionary or None.")

    unknown = [src for src in column_map if src not in table.column_names]
    if unknown:
        raise SchemaViolationError(
            f"column_map refers to columns not present in the data: {unknown}"
        )
    return table.rename_columns(
        [column_map.get(name, name) for name in table.column_names]
    )


def _attach_metadata(
    table: pa.Table,
    table_kind: str | None = None,
    cleaning_stats: dict[str, int] | None = None,
    warning_messages: list[str] | None = None,
) -> pa.Table:
    """
    Attaches standardized metadata keys to the table schema.

    Existing metadata is preserved; accumulated warnings are merged with any
    warnings already stored on the table.

    Args:
        table: The PyArrow Table.
        table_kind: 'reference', 'predictions' or a result table name.
        cleaning_stats: Row counts collected while cleaning.
        warning_messages: Warnings to store alongside the table.

    Returns:
        The PyArrow Table with updated schema metadata.
    """
    existing_metadata = dict(table.schema.metadata or {})
    metadata: dict[bytes, bytes] = {}
    if table_kind is not None:
        metadata[META_KEY_TABLE_KIND.encode("utf-8")] = table_kind.encode("utf-8")
    if cleaning_stats is not None:
        metadata[META_KEY_CLEANING_STATS.encode("utf-8")] = json.dumps(
            cleaning_stats
        ).encode("utf-8")
    if warning_messages is not None:
        merged = get_warnings(table) + [
            msg for msg in warning_messages if msg not in get_warnings(table)
        ]
        metadata[META_KEY_WARNINGS.encode("utf-8")] = json.dumps(merged).encode("utf-8")

    existing_metadata.update(metadata)
    return table.replace_schema_metadata(existing_metadata)


def _read_json_metadata(table: pa.Table, key: str):
    metadata = table.schema.metadata
    if not metadata:
        return None
    raw = metadata.get(key.encode("utf-8"))
    if raw is None:
        return None
    return json.loads(raw.decode("utf-8"))


def get_warnings(table: pa.Table) -> list[str]:
    """Returns the warnings accumulated on `table` (empty list if none)."""
    if not isinstance(table, pa.Table):
        raise TypeError(f"Expected a pyarrow.Table, got {type(table).__name__}")
    return list(_read_json_metadata(table, META_KEY_WARNINGS) or [])


def get_cleaning_stats(table: pa.Table) -> dict[str, int]:
    """Returns the row counts recorded when `table` was cleaned (empty dict if none)."""
    if not isinstance(table, pa.Table):
        raise TypeError(f"Expected a pyarrow.Table, got {type(table).__name__}")
    return dict(_read_json_metadata(table, META_KEY_CLEANING_STATS) or {})


def get_table_kind(table: pa.Table) -> str | None:
    metadata = table.schema.metadata or {}
    raw = metadata.get(META_KEY_TABLE_KIND.encode("utf-8"))
    return raw.decode("utf-8") if raw is not None else None
