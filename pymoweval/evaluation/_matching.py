"""
Temporal nearest-neighbour matching of predicted to reference mowing events.
"""

import logging
from collections import defaultdict

import pyarrow as pa
import pyarrow.compute as pc

from ..io._io_utils import (
    DATA_SOURCE_COL,
    DOY_COL,
    GROUP_COL,
    METHOD_COL,
    PREDICTION_COLUMNS,
    REFERENCE_COLUMNS,
    REGION_COL,
    UNIT_COL,
    YEAR_COL,
)
from ._evaluation_utils import _require_table, _validate_tolerance

logger = logging.getLogger(__name__)

MATCH_SCHEMA = pa.schema(
    [
        pa.field(UNIT_COL, pa.string()),
        pa.field(REGION_COL, pa.string()),
        pa.field(YEAR_COL, pa.int64()),
        pa.field(GROUP_COL, pa.string()),
        pa.field(METHOD_COL, pa.string()),
        pa.field(DATA_SOURCE_COL, pa.string()),
        pa.field("reference_doy", pa.int64()),
        pa.field("predicted_doy", pa.int64()),
        pa.field("difference", pa.int64()),  # predicted - reference
        pa.field("absolute_difference", pa.int64()),
        pa.field("prediction_index", pa.int64()),  # row of the prediction table
    ]
)


def match(reference: pa.Table, predictions: pa.Table) -> pa.Table:
    """
    Pairs every reference event with its nearest prediction from each submission.

    Predictions are grouped by (unit_id, year, region). For each reference
    event and each submission (group_id, method, data_source) with at least
    one candidate in that unit and year, the candidate with the smallest
    absolute day difference is kept. On ties the candidate that comes first
    in the prediction table wins.

    A reference event without candidates from a submission produces no pair
    for that submission; it is not a match at infinite distance. Whether a
    pair is a true positive is decided later with `is_true_positive`.

    Args:
        reference: Cleaned reference table (unit_id, region, year, doy).
        predictions: Cleaned prediction table.

    Returns:
        A PyArrow Table of matched pairs, ordered by reference row and then
        by the first appearance of each submission among the candidates.
    """
    _require_table(reference, "reference", REFERENCE_COLUMNS)
    _require_table(predictions, "predictions", PREDICTION_COLUMNS)

    candidates: dict[tuple, list[tuple[int, dict]]] = defaultdict(list)
    for idx, pred in enumerate(predictions.select(PREDICTION_COLUMNS).to_pylist()):
        candidates[(pred[UNIT_COL], pred[YEAR_COL], pred[REGION_COL])].append((idx, pred))

    pairs: list[dict] = []
    for ref in reference.select(REFERENCE_COLUMNS).to_pylist():
        key = (ref[UNIT_COL], ref[YEAR_COL], ref[REGION_COL])
        nearest: dict[tuple[str, str, str], tuple[int, dict, int]] = {}

        for idx, pred in candidates.get(key, []):
            submission = (pred[GROUP_COL], pred[METHOD_COL], pred[DATA_SOURCE_COL])
            distance = abs(pred[DOY_COL] - ref[DOY_COL])
            current = nearest.get(submission)
            # strict comparison keeps the first candidate on ties
            if current is None or distance < current[2]:
                nearest[submission] = (idx, pred, distance)

        for (group_id, method, data_source), (idx, pred, distance) in nearest.items():
            pairs.append(
                {
                    UNIT_COL: ref[UNIT_COL],
                    REGION_COL: ref[REGION_COL],
                    YEAR_COL: ref[YEAR_COL],
                    GROUP_COL: group_id,
                    METHOD_COL: method,
                    DATA_SOURCE_COL: data_source,
                    "reference_doy": ref[DOY_COL],
                    "predicted_doy": pred[DOY_COL],
                    "difference": pred[DOY_COL] - ref[DOY_COL],
                    "absolute_difference": distance,
                    "prediction_index": idx,
                }
            )

    logger.debug(
        f"Matched {reference.num_rows} reference events against "
        f"{predictions.num_rows} predictions: {len(pairs)} pairs."
    )
    return pa.Table.from_pylist(pairs, schema=MATCH_SCHEMA)


def is_true_positive(matched_pairs: pa.Table, tolerance: int | float) -> pa.ChunkedArray:
    """Boolean mask: absolute_difference <= tolerance, per matched pair."""
    _require_table(matched_pairs, "matched_pairs", ["absolute_difference"])
    tolerance = _validate_tolerance(tolerance)
    return pc.less_equal(matched_pairs["absolute_difference"], tolerance)


def true_positive_pairs(matched_pairs: pa.Table, tolerance: int | float) -> pa.Table:
    """The matched pairs that are within `tolerance` days."""
    return matched_pairs.filter(is_true_positive(matched_pairs, tolerance))
