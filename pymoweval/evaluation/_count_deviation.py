"""
Per-field comparison of the number of predicted and reference mowing events.
"""

import logging

import numpy as np
import pandas as pd
import pyarrow as pa
from sklearn.metrics import mean_absolute_error, mean_squared_error

from ..errors import UndefinedMetricWarning, emit_warning
from ..io._io_utils import (
    DATA_SOURCE_COL,
    GROUP_COL,
    METHOD_COL,
    PREDICTION_COLUMNS,
    REFERENCE_COLUMNS,
    REGION_COL,
    SUBMISSION_COLUMNS,
    UNIT_COL,
    YEAR_COL,
    _attach_metadata,
    get_warnings,
)
from ._evaluation_utils import (
    _count_rows,
    _cross_join,
    _distinct_submissions,
    _explicit_join,
    _require_table,
    _rollup_apply,
    _table_from_records,
    _years_as_labels,
)

logger = logging.getLogger(__name__)

COUNT_DEVIATION_SCHEMA = pa.schema(
    [
        pa.field(GROUP_COL, pa.string()),
        pa.field(METHOD_COL, pa.string()),
        pa.field(DATA_SOURCE_COL, pa.string()),
        pa.field(REGION_COL, pa.string()),
        pa.field(YEAR_COL, pa.string()),
        pa.field("n_units", pa.int64()),
        pa.field("mae", pa.float64()),
        pa.field("rel_mae", pa.float64()),
        pa.field("bias", pa.float64()),
        pa.field("mse", pa.float64()),
        pa.field("rmse", pa.float64()),
        pa.field("rel_rmse", pa.float64()),
        pa.field("mape", pa.float64()),
    ]
)

UNIT_KEY = [UNIT_COL, YEAR_COL, REGION_COL]


def _count_metrics(nmow_ref: np.ndarray, nmow_pred: np.ndarray) -> dict:
    """
    Error metrics of predicted against reference event counts over a set of units.

    The relative variants divide by the mean reference count. MAPE is the mean
    of |difference / nmow_ref| and is NaN when any unit has no reference
    events; `n_mape_undefined` reports how many units caused that.
    """
    nmow_ref = np.asarray(nmow_ref, dtype=float)
    nmow_pred = np.asarray(nmow_pred, dtype=float)
    difference = nmow_pred - nmow_ref

    mae = float(mean_absolute_error(nmow_ref, nmow_pred))
    mse = float(mean_squared_error(nmow_ref, nmow_pred))
    rmse = float(np.sqrt(mse))
    mean_ref = float(np.mean(nmow_ref))

    n_mape_undefined = int(np.sum(nmow_ref == 0))
    if n_mape_undefined:
        mape = np.nan
    else:
        mape = float(np.mean(np.abs(difference / nmow_ref)))

    return {
        "n_units": len(nmow_ref),
        "mae": mae,
        "rel_mae": mae / mean_ref if mean_ref != 0 else np.nan,
        "bias": float(np.mean(difference)),
        "mse": mse,
        "rmse": rmse,
        "rel_rmse": rmse / mean_ref if mean_ref != 0 else np.nan,
        "mape": mape,
        "n_mape_undefined": n_mape_undefined,
    }


def _unit_counts(reference: pa.Table, predictions: pa.Table) -> pd.DataFrame:
    """
    One row per submission and reference unit/year with nmow_ref and nmow_pred.

    Every submission is paired with every unit that has reference events;
    units it made no prediction for get nmow_pred = 0. Predicted units
    without reference events are left out.
    """
    ref_df = reference.select(REFERENCE_COLUMNS).to_pandas()
    pred_df = predictions.select(PREDICTION_COLUMNS).to_pandas()

    nmow_ref = _count_rows(ref_df, UNIT_KEY, "nmow_ref")
    nmow_pred = _count_rows(pred_df, SUBMISSION_COLUMNS + UNIT_KEY, "nmow_pred")

    submissions = _distinct_submissions(pred_df)
    grid = _cross_join(submissions, nmow_ref)
    return _explicit_join(
        grid, nmow_pred, on=SUBMISSION_COLUMNS + UNIT_KEY, fill_values={"nmow_pred": 0}
    )


def count_deviation(
    reference: pa.Table,
    predictions: pa.Table,
    verbosity: int = 0,
) -> pa.Table:
    """
    Compares the number of predicted and reference events per field.

    For every submission and every unit/year with reference events,
    difference = nmow_pred - nmow_ref, where nmow_pred is 0 if the submission
    predicted nothing for that unit. The differences are aggregated per
    submission, region and year, plus 'All' roll-ups, into mae, rel_mae,
    bias, mse, rmse, rel_rmse and mape.

    Args:
        reference: Cleaned reference table.
        predictions: Cleaned prediction table.
        verbosity: Controls logging and warnings.

    Returns:
        A PyArrow Table with the count deviation schema. MAPE is NaN (with an
        UndefinedMetricWarning) for partitions containing a unit with no
        reference events.
    """
    _require_table(reference, "reference", REFERENCE_COLUMNS)
    _require_table(predictions, "predictions", PREDICTION_COLUMNS)
    collected = get_warnings(reference) + get_warnings(predictions)

    counts = _unit_counts(reference, predictions)
    records = _rollup_apply(
        _years_as_labels(counts),
        lambda units: _count_metrics(units["nmow_ref"].to_numpy(), units["nmow_pred"].to_numpy()),
    )

    n_undefined = sum(1 for record in records if record.pop("n_mape_undefined"))
    if n_undefined:
        emit_warning(
            f"MAPE is undefined (units without reference events) for {n_undefined} "
            "count deviation row(s); reported as NaN.",
            UndefinedMetricWarning,
            collected,
            logger,
            verbosity,
        )
    if verbosity <= -1:
        logger.info(f"Count deviation table: {len(records)} rows over {len(counts)} unit rows.")

    table = _table_from_records(records, COUNT_DEVIATION_SCHEMA)
    return _attach_metadata(table, table_kind="count_deviation", warning_messages=collected)
