"""
Classification counts (T, P, TP, FP) and Recall / Precision / F1 per
submission, region and year.
"""

import logging

import numpy as np
import pandas as pd
import pyarrow as pa

from ..errors import UndefinedMetricWarning, emit_warning
from ..io._io_utils import (
    DATA_SOURCE_COL,
    GROUP_COL,
    METHOD_COL,
    PREDICTION_COLUMNS,
    REGION_COL,
    SUBMISSION_COLUMNS,
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
    _rollup_sums,
    _safe_ratio,
    _table_from_records,
    _validate_tolerance,
    _years_as_labels,
)

logger = logging.getLogger(__name__)

ACCURACY_SCHEMA = pa.schema(
    [
        pa.field(GROUP_COL, pa.string()),
        pa.field(METHOD_COL, pa.string()),
        pa.field(DATA_SOURCE_COL, pa.string()),
        pa.field(REGION_COL, pa.string()),
        pa.field(YEAR_COL, pa.string()),
        pa.field("T", pa.int64()),
        pa.field("P", pa.int64()),
        pa.field("TP", pa.int64()),
        pa.field("FP", pa.int64()),
        pa.field("Recall", pa.float64()),
        pa.field("Precision", pa.float64()),
        pa.field("F1", pa.float64()),
    ]
)

COUNT_COLUMNS = ["T", "P", "TP", "FP"]
REGION_YEAR = [REGION_COL, YEAR_COL]


def _classification_metrics(counts: pd.DataFrame) -> pd.DataFrame:
    """
    Derives Recall, Precision and F1 from summed counts.

    Recall is NaN when T is 0 (no ground truth). Precision is 0 when P is 0.
    F1 is 0 when Precision + Recall is 0 and NaN when Recall is undefined.
    """
    out = counts.copy()
    recall = _safe_ratio(out["TP"].to_numpy(), out["T"].to_numpy(), zero_value=np.nan)
    precision = _safe_ratio(out["TP"].to_numpy(), out["P"].to_numpy(), zero_value=0.0)
    f1 = _safe_ratio(2 * precision * recall, precision + recall, zero_value=0.0)
    f1[np.isnan(recall)] = np.nan
    out["Recall"] = recall
    out["Precision"] = precision
    out["F1"] = f1
    return out


def aggregate(
    reference: pa.Table,
    predictions: pa.Table,
    matched_pairs: pa.Table,
    tolerance: int | float,
    verbosity: int = 0,
) -> pa.Table:
    """
    Builds the accuracy table from reference events, predictions and matches.

    * T: reference events per (region, year), counted from `reference`
      rather than from the matches so unmatched events are not lost.
    * P: predictions per submission, region and year.
    * TP: distinct predictions that are the nearest match of a reference
      event within `tolerance` days. TP never exceeds P or T.
    * FP: P - TP.

    Every submission gets a row for every (region, year) seen in the
    reference or the predictions; combinations without predictions or
    matches get explicit zeros. Roll-up rows with region 'All', year 'All'
    and both are added by summing the counts, and the ratios are derived
    only after summation.

    Args:
        reference: Cleaned reference table.
        predictions: Cleaned prediction table (the one passed to `match`).
        matched_pairs: Output of `match(reference, predictions)`.
        tolerance: Maximum absolute day difference for a true positive.
        verbosity: Controls logging and warnings.

    Returns:
        A PyArrow Table with the accuracy schema (year as string).
    """
    _require_table(reference, "reference", REGION_YEAR)
    _require_table(predictions, "predictions", PREDICTION_COLUMNS)
    _require_table(
        matched_pairs,
        "matched_pairs",
        SUBMISSION_COLUMNS + REGION_YEAR + ["absolute_difference", "prediction_index"],
    )
    tolerance = _validate_tolerance(tolerance)
    collected = get_warnings(reference) + get_warnings(predictions)

    ref_df = reference.select(REGION_YEAR).to_pandas()
    pred_df = predictions.select(PREDICTION_COLUMNS).to_pandas()
    pairs_df = matched_pairs.select(
        SUBMISSION_COLUMNS + REGION_YEAR + ["absolute_difference", "prediction_index"]
    ).to_pandas()

    submissions = _distinct_submissions(pred_df, pairs_df)
    if submissions.empty:
        if verbosity <= 0:
            logger.warning("No predictions to evaluate. Returning empty accuracy table.")
        return _attach_metadata(
            _table_from_records([], ACCURACY_SCHEMA),
            table_kind="accuracy",
            warning_messages=collected,
        )

    t_counts = _count_rows(ref_df, REGION_YEAR, "T")
    p_counts = _count_rows(pred_df, SUBMISSION_COLUMNS + REGION_YEAR, "P")
    tp_pairs = pairs_df[pairs_df["absolute_difference"] <= tolerance]
    tp_counts = _count_rows(
        tp_pairs.drop_duplicates("prediction_index"), SUBMISSION_COLUMNS + REGION_YEAR, "TP"
    )

    region_years = (
        pd.concat([ref_df, pred_df[REGION_YEAR]], ignore_index=True)
        .drop_duplicates()
        .sort_values(REGION_YEAR, kind="mergesort")
        .reset_index(drop=True)
    )
    grid = _cross_join(submissions, region_years)
    grid = _explicit_join(grid, t_counts, on=REGION_YEAR, fill_values={"T": 0})
    grid = _explicit_join(
        grid, p_counts, on=SUBMISSION_COLUMNS + REGION_YEAR, fill_values={"P": 0}
    )
    grid = _explicit_join(
        grid, tp_counts, on=SUBMISSION_COLUMNS + REGION_YEAR, fill_values={"TP": 0}
    )
    grid["FP"] = grid["P"] - grid["TP"]

    summed = _rollup_sums(_years_as_labels(grid), COUNT_COLUMNS)
    result = _classification_metrics(summed)

    n_undefined = int(result["Recall"].isna().sum())
    if n_undefined:
        emit_warning(
            f"Recall is undefined (T = 0) for {n_undefined} accuracy row(s); reported as NaN.",
            UndefinedMetricWarning,
            collected,
            logger,
            verbosity,
        )
    if verbosity <= -1:
        logger.info(
            f"Accuracy table: {len(submissions)} submission(s), "
            f"{len(region_years)} region/year combination(s), {len(result)} rows."
        )

    table = _table_from_records(
        result[ACCURACY_SCHEMA.names].to_dict("records"), ACCURACY_SCHEMA
    )
    return _attach_metadata(table, table_kind="accuracy", warning_messages=collected)
