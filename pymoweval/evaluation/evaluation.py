"""
Evaluation module running the full matching and metric pipeline.
"""

import logging

import pyarrow as pa

from ..config import MowingSettings, resolve_setting
from ..io import clean_predictions, clean_reference
from ..io._io_utils import (
    TABLE_KIND_PREDICTIONS,
    TABLE_KIND_REFERENCE,
    _attach_metadata,
    get_table_kind,
    get_warnings,
)
from ._classification import aggregate
from ._count_deviation import count_deviation
from ._evaluation_utils import _round_float_columns, _validate_tolerance
from ._matching import match
from ._regression import regression_metrics

logger = logging.getLogger(__name__)

RESULT_KEYS = ("matches", "accuracy", "regression", "count_deviation")


# This is the public API function
def evaluation(
    reference: pa.Table,
    predictions: pa.Table,
    tolerance: int | float | None = None,
    true_positives_only: bool | None = None,
    decimal_places: int | None = None,
    settings: MowingSettings | None = None,
    verbosity: int = 0,
) -> dict[str, pa.Table]:
    """
    Evaluates predicted mowing events against reference events.

    Runs, in order: nearest-date matching, the classification counts and
    Recall / Precision / F1, the date metrics (MAE, bias, r) and the event
    count deviation metrics. Each stage produces a new table; none of the
    inputs are modified.

    Tables produced by `pymoweval.io.load_reference` / `load_predictions`
    (or the `clean_*` functions) are used as they are. Tables without that
    provenance are cleaned first with the configured valid range and
    minimum spacing.

    Args:
        reference: Reference event table (unit_id, region, year, doy).
        predictions: Prediction table (group_id, method, data_source, region,
                     unit_id, year, doy).
        tolerance: Maximum absolute day difference for a true positive.
                   Defaults to the configured value (12).
        true_positives_only: Whether the date metrics use only true-positive
                             pairs. Defaults to the configured value (True).
        decimal_places: If provided, rounds every float metric column.
        settings: Optional settings object; the process-wide settings are
                  used when None.
        verbosity: Controls the verbosity of logging and warnings.
                   - `<= -1`: Show INFO, WARNING, and ERROR level messages.
                   - `== 0`: Show WARNING and ERROR level messages (default).
                   - `>= 1`: Show only ERROR level messages (suppress warnings).

    Returns:
        A dictionary with the tables 'matches', 'accuracy', 'regression' and
        'count_deviation'. Every table carries all warnings raised while
        loading and evaluating in its schema metadata (see
        `pymoweval.io.get_warnings`).

    Raises:
        TypeError: If the inputs are not PyArrow Tables or parameters have the
                   wrong type.
        ValueError: If parameters are out of range.
        SchemaViolationError: If required columns are missing.
        RuntimeError: If a metric stage fails unexpectedly.
    """
    ######################
    # 1. Validate Inputs #
    ######################
    if not isinstance(reference, pa.Table):
        raise TypeError("Input 'reference' must be a PyArrow Table.")
    if not isinstance(predictions, pa.Table):
        raise TypeError("Input 'predictions' must be a PyArrow Table.")
    if decimal_places is not None:
        if not isinstance(decimal_places, int) or decimal_places < 0:
            raise ValueError(
                "Input 'decimal_places' must be a non-negative integer or None."
            )
    tolerance = _validate_tolerance(resolve_setting(tolerance, settings, "tolerance"))
    true_positives_only = resolve_setting(
        true_positives_only, settings, "regression_true_positives_only"
    )
    if not isinstance(true_positives_only, bool):
        raise TypeError("Input 'true_positives_only' must be a boolean.")

    #########################
    # 2. Clean if necessary #
    #########################
    if get_table_kind(reference) != TABLE_KIND_REFERENCE:
        if verbosity <= -1:
            logger.info("Reference table has not been cleaned yet; cleaning it now.")
        reference = clean_reference(reference, settings=settings, verbosity=verbosity)
    if get_table_kind(predictions) != TABLE_KIND_PREDICTIONS:
        if verbosity <= -1:
            logger.info("Prediction table has not been cleaned yet; cleaning it now.")
        predictions = clean_predictions(
            predictions, reference, settings=settings, verbosity=verbosity
        )

    ##############
    # 3. Metrics #
    ##############
    try:
        matches = match(reference, predictions)
        accuracy = aggregate(
            reference, predictions, matches, tolerance, verbosity=verbosity
        )
        regression = regression_metrics(
            matches,
            tolerance=tolerance,
            true_positives_only=true_positives_only,
            verbosity=verbosity,
        )
        deviation = count_deviation(reference, predictions, verbosity=verbosity)
    except (TypeError, ValueError):
        raise
    except Exception as e:
        raise RuntimeError(f"Error during metric calculation: {e}") from e

    ##################################
    # 4. Collect Warnings & Rounding #
    ##################################
    collected: list[str] = []
    for table in (reference, predictions, matches, accuracy, regression, deviation):
        for message in get_warnings(table):
            if message not in collected:
                collected.append(message)

    results = dict(zip(RESULT_KEYS, (matches, accuracy, regression, deviation)))
    for key, table in results.items():
        table = _attach_metadata(table, table_kind=key, warning_messages=collected)
        if key != "matches":
            table = _round_float_columns(table, decimal_places)
        results[key] = table

    if verbosity <= -1:
        logger.info(
            f"Evaluation finished: {matches.num_rows} matched pairs, "
            f"{accuracy.num_rows} accuracy rows, {len(collected)} warning(s)."
        )
    return results
