"""
Tests for nearest-date matching of predictions to reference events.
"""

import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc
import pytest

from pymoweval.errors import SchemaViolationError
from pymoweval.evaluation import is_true_positive, match, true_positive_pairs
from pymoweval.io._io_utils import PREDICTION_SCHEMA, REFERENCE_SCHEMA


def _reference(rows) -> pa.Table:
    """rows: (unit_id, region, year, doy)"""
    return pa.Table.from_pylist(
        [dict(zip(REFERENCE_SCHEMA.names, row)) for row in rows], schema=REFERENCE_SCHEMA
    )


def _predictions(rows) -> pa.Table:
    """rows: (group_id, method, data_source, region, unit_id, year, doy)"""
    return pa.Table.from_pylist(
        [dict(zip(PREDICTION_SCHEMA.names, row)) for row in rows], schema=PREDICTION_SCHEMA
    )


class TestMatchSelection:
    def test_nearest_candidate_is_chosen(self):
        reference = _reference([("1", "r", 2021, 100)])
        predictions = _predictions(
            [
                ("A", "m", "s", "r", "1", 2021, 130),
                ("A", "m", "s", "r", "1", 2021, 105),
            ]
        )
        pairs = match(reference, predictions).to_pylist()
        assert len(pairs) == 1
        assert pairs[0]["predicted_doy"] == 105
        assert pairs[0]["difference"] == 5
        assert pairs[0]["absolute_difference"] == 5
        assert pairs[0]["prediction_index"] == 1

    def test_difference_is_predicted_minus_reference(self):
        reference = _reference([("1", "r", 2021, 100)])
        predictions = _predictions([("A", "m", "s", "r", "1", 2021, 92)])
        pair = match(reference, predictions).to_pylist()[0]
        assert pair["difference"] == -8
        assert pair["absolute_difference"] == 8

    def test_tie_goes_to_first_prediction_row(self):
        reference = _reference([("1", "r", 2021, 100)])
        predictions = _predictions(
            [
                ("A", "m", "s", "r", "1", 2021, 110),
                ("A", "m", "s", "r", "1", 2021, 90),
            ]
        )
        pair = match(reference, predictions).to_pylist()[0]
        assert pair["predicted_doy"] == 110
        assert pair["prediction_index"] == 0

    def test_no_candidate_gives_no_pair(self):
        reference = _reference([("1", "r", 2021, 100), ("2", "r", 2021, 100)])
        predictions = _predictions([("A", "m", "s", "r", "1", 2021, 300)])
        pairs = match(reference, predictions)
        # A far-away candidate is still a pair; a missing one is not
        assert pairs["unit_id"].to_pylist() == ["1"]
        assert pairs["absolute_difference"].to_pylist() == [200]

    def test_candidates_must_share_unit_year_and_region(self):
        reference = _reference([("1", "r", 2021, 100)])
        predictions = _predictions(
            [
                ("A", "m", "s", "r", "1", 2022, 100),
                ("A", "m", "s", "r", "2", 2021, 100),
                ("A", "m", "s", "q", "1", 2021, 100),
            ]
        )
        assert match(reference, predictions).num_rows == 0

    def test_one_pair_per_submission(self):
        reference = _reference([("1", "r", 2021, 100)])
        predictions = _predictions(
            [
                ("A", "m1", "s", "r", "1", 2021, 104),
                ("B", "m1", "s", "r", "1", 2021, 99),
                ("A", "m2", "s", "r", "1", 2021, 101),
                ("A", "m1", "s2", "r", "1", 2021, 120),
            ]
        )
        pairs = match(reference, predictions)
        submissions = list(
            zip(pairs["group_id"].to_pylist(), pairs["method"].to_pylist(), pairs["data_source"].to_pylist())
        )
        assert submissions == [("A", "m1", "s"), ("B", "m1", "s"), ("A", "m2", "s"), ("A", "m1", "s2")]
        assert pairs["predicted_doy"].to_pylist() == [104, 99, 101, 120]

    def test_one_prediction_can_match_several_references(self):
        reference = _reference([("1", "r", 2021, 100), ("1", "r", 2021, 130)])
        predictions = _predictions([("A", "m", "s", "r", "1", 2021, 112)])
        pairs = match(reference, predictions)
        assert pairs["prediction_index"].to_pylist() == [0, 0]

    def test_fixture_pairs(self, reference_table, predictions_table):
        pairs = match(reference_table, predictions_table)
        group_a = pairs.filter(pc.equal(pairs["group_id"], "A")).to_pylist()
        assert [(p["unit_id"], p["reference_doy"], p["predicted_doy"]) for p in group_a] == [
            ("u1", 100, 105),
            ("u1", 160, 163),
            ("u2", 120, 140),
            ("u3", 110, 108),
            ("u3", 200, 108),
        ]

    def test_empty_inputs(self, reference_table):
        empty_predictions = _predictions([])
        pairs = match(reference_table, empty_predictions)
        assert pairs.num_rows == 0
        assert "absolute_difference" in pairs.column_names
        assert match(_reference([]), empty_predictions).num_rows == 0


class TestMatchDeterminism:
    def test_same_input_same_output(self, reference_table, predictions_table):
        first = match(reference_table, predictions_table)
        second = match(reference_table, predictions_table)
        pd.testing.assert_frame_equal(first.to_pandas(), second.to_pandas())

    def test_inputs_are_not_modified(self, reference_table, predictions_table):
        ref_before = reference_table.to_pylist()
        pred_before = predictions_table.to_pylist()
        match(reference_table, predictions_table)
        assert reference_table.to_pylist() == ref_before
        assert predictions_table.to_pylist() == pred_before


class TestMatchInvalidInputs:
    def test_requires_tables(self, predictions_table):
        with pytest.raises(TypeError):
            match(predictions_table.to_pandas(), predictions_table)

    def test_missing_column(self, reference_table, predictions_table):
        with pytest.raises(SchemaViolationError):
            match(reference_table.drop_columns(["doy"]), predictions_table)


class TestTruePositive:
    @pytest.fixture
    def pairs(self):
        reference = _reference([("1", "r", 2021, 100), ("2", "r", 2021, 100), ("3", "r", 2021, 100)])
        predictions = _predictions(
            [
                ("A", "m", "s", "r", "1", 2021, 112),
                ("A", "m", "s", "r", "2", 2021, 87),
                ("A", "m", "s", "r", "3", 2021, 100),
            ]
        )
        return match(reference, predictions)

    def test_tolerance_is_inclusive(self, pairs):
        assert is_true_positive(pairs, 12).to_pylist() == [True, False, True]

    def test_zero_tolerance(self, pairs):
        assert is_true_positive(pairs, 0).to_pylist() == [False, False, True]

    def test_true_positive_pairs(self, pairs):
        assert true_positive_pairs(pairs, 13)["unit_id"].to_pylist() == ["1", "2", "3"]

    @pytest.mark.parametrize("tolerance", [-1, float("nan")])
    def test_invalid_tolerance_value(self, pairs, tolerance):
        with pytest.raises(ValueError):
            is_true_positive(pairs, tolerance)

    @pytest.mark.parametrize("tolerance", ["12", None, True])
    def test_invalid_tolerance_type(self, pairs, tolerance):
        with pytest.raises(TypeError):
            is_true_positive(pairs, tolerance)
