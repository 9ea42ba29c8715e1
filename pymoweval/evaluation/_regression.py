"""
Date accuracy of matched events: MAE, bias and Pearson correlation between
predicted and reference day of year.
"""

import logging

import numpy as np
import pandas as pd
import pyarrow as pa
from scipy.stats import pearsonr
from sklearn.metrics import mean_absolute_error

from ..config import MowingSettings, resolve_setting
from ..io._io_utils import (
    DATA_SOURCE_COL,
    GROUP_COL,
    METHOD_COL,
    REGION_COL,
    SUBMISSION_COLUMNS,
    YEAR_COL,
    _attach_metadata,
    get_warnings,
)
from ._evaluation_utils import (
    _require_table,
    _rollup_apply,
    _table_from_records,
    _validate_tolerance,
    _years_as_labels,
)

logger = logging.getLogger(__name__)

REGRESSION_SCHEMA = pa.schema(
    [
        pa.field(GROUP_COL, pa.string()),
        pa.field(METHOD_COL, pa.string()),
        pa.field(DATA_SOURCE_COL, pa.string()),
        pa.field(REGION_COL, pa.string()),
        pa.field(YEAR_COL, pa.string()),
        pa.field("n_pairs", pa.int64()),
        pa.field("mae", pa.float64()),
        pa.field("bias", pa.float64()),
        pa.field("r", pa.float64()),
    ]
)

PAIR_COLUMNS = SUBMISSION_COLUMNS + [
    REGION_COL,
    YEAR_COL,
    "reference_doy",
    "predicted_doy",
    "absolute_difference",
]


def _pearson(reference_doy: np.ndarray, predicted_doy: np.ndarray) -> float:
    """Pearson r, or NaN for fewer than two pairs or a constant input."""
    if len(reference_doy) < 2:
        return np.nan
    if np.ptp(reference_doy) == 0 or np.ptp(predicted_doy) == 0:
        return np.nan
    r, _ = pearsonr(reference_doy, predicted_doy)
    return float(r)


def _date_metrics(pairs: pd.DataFrame) -> dict:
    reference_doy = pairs["reference_doy"].to_numpy(dtype=float)
    predicted_doy = pairs["predicted_doy"].to_numpy(dtype=float)
    return {
        "n_pairs": len(pairs),
        "mae": float(mean_absolute_error(reference_doy, predicted_doy)),
        "bias": float(np.mean(predicted_doy - reference_doy)),
        "r": _pearson(reference_doy, predicted_doy),
    }


def regression_metrics(
    matched_pairs: pa.Table,
    tolerance: int | float | None = None,
    true_positives_only: bool | None = None,
    settings: MowingSettings | None = None,
    verbosity: int = 0,
) -> pa.Table:
    """
    Computes MAE, bias and Pearson r between predicted and reference dates.

    By default only true-positive pairs (absolute difference <= tolerance)
    are used. With `true_positives_only=False` every matched pair is used
    instead, whatever its distance.

    Metrics are reported per submission, region and year, plus the 'All'
    roll-ups over region, year and both. Roll-up rows are computed from the
    raw pairs of the partition, never by averaging the per-region metrics.
    Partitions without any pair have no row.

    Args:
        matched_pairs: Output of `match`.
        tolerance: Maximum absolute day difference for a true positive.
                   Defaults to the configured value.
        true_positives_only: Restrict to true positives. Defaults to the
                             configured `regression_true_positives_only`.
        settings: Optional settings object.
        verbosity: Controls logging and warnings.

    Returns:
        A PyArrow Table with columns group_id, method, data_source, region,
        year, n_pairs, mae, bias, r. `bias` is the mean of predicted minus
        reference day; `r` is NaN for fewer than two pairs or constant dates.
    """
    _require_table(matched_pairs, "matched_pairs", PAIR_COLUMNS)
    tolerance = _validate_tolerance(resolve_setting(tolerance, settings, "tolerance"))
    true_positives_only = resolve_setting(
        true_positives_only, settings, "regression_true_positives_only"
    )
    if not isinstance(true_positives_only, bool):
        raise TypeError("true_positives_only must be a boolean.")
    collected = get_warnings(matched_pairs)

    pairs_df = matched_pairs.select(PAIR_COLUMNS).to_pandas()
    if true_positives_only:
        pairs_df = pairs_df[pairs_df["absolute_difference"] <= tolerance]

    if verbosity <= -1:
        logger.info(
            f"Date metrics over {len(pairs_df)} "
            f"{'true-positive' if true_positives_only else 'matched'} pair(s)."
        )

    records = _rollup_apply(_years_as_labels(pairs_df), _date_metrics)
    table = _table_from_records(records, REGRESSION_SCHEMA)
    return _attach_metadata(table, table_kind="regression", warning_messages=collected)
