"""
Tests for the classification counts and Recall / Precision / F1 table.
"""

import numpy as np
import pandas as pd
import pyarrow as pa
import pytest

from pymoweval.errors import UndefinedMetricWarning
from pymoweval.evaluation import ALL_LABEL, aggregate, match
from pymoweval.evaluation._classification import ACCURACY_SCHEMA, _classification_metrics
from pymoweval.io import get_warnings
from pymoweval.io._io_utils import PREDICTION_SCHEMA, REFERENCE_SCHEMA


def _reference(rows) -> pa.Table:
    return pa.Table.from_pylist(
        [dict(zip(REFERENCE_SCHEMA.names, row)) for row in rows], schema=REFERENCE_SCHEMA
    )


def _predictions(rows) -> pa.Table:
    return pa.Table.from_pylist(
        [dict(zip(PREDICTION_SCHEMA.names, row)) for row in rows], schema=PREDICTION_SCHEMA
    )


def _aggregate(reference, predictions, tolerance=12, verbosity=1) -> pd.DataFrame:
    pairs = match(reference, predictions)
    return aggregate(reference, predictions, pairs, tolerance, verbosity=verbosity).to_pandas()


def _row(df: pd.DataFrame, group_id: str, region: str, year: str) -> pd.Series:
    selected = df[(df["group_id"] == group_id) & (df["region"] == region) & (df["year"] == year)]
    assert len(selected) == 1
    return selected.iloc[0]


def _assert_rollups_match_base(accuracy: pd.DataFrame) -> None:
    """Every 'All' row equals the sum of the base rows it covers."""
    counts = ["T", "P", "TP", "FP"]
    base = accuracy[(accuracy["region"] != ALL_LABEL) & (accuracy["year"] != ALL_LABEL)]
    rollups = accuracy[(accuracy["region"] == ALL_LABEL) | (accuracy["year"] == ALL_LABEL)]
    for _, row in rollups.iterrows():
        parts = base[
            (base["group_id"] == row["group_id"])
            & (base["method"] == row["method"])
            & (base["data_source"] == row["data_source"])
        ]
        for dim in ("region", "year"):
            if row[dim] != ALL_LABEL:
                parts = parts[parts[dim] == row[dim]]
        assert len(parts) > 0
        assert tuple(parts[counts].sum()) == tuple(row[counts])


@pytest.fixture
def accuracy_df(reference_table, predictions_table) -> pd.DataFrame:
    return _aggregate(reference_table, predictions_table)


class TestSingleEventExample:
    """One reference event at day 100 and predictions at days 105 and 130."""

    @pytest.fixture
    def result(self):
        reference = _reference([("1", "r", 2021, 100)])
        predictions = _predictions(
            [
                ("A", "m", "s", "r", "1", 2021, 105),
                ("A", "m", "s", "r", "1", 2021, 130),
            ]
        )
        return _aggregate(reference, predictions)

    def test_counts(self, result):
        row = _row(result, "A", "r", "2021")
        assert (row["T"], row["P"], row["TP"], row["FP"]) == (1, 2, 1, 1)

    def test_ratios(self, result):
        row = _row(result, "A", "r", "2021")
        assert row["Recall"] == pytest.approx(1.0)
        assert row["Precision"] == pytest.approx(0.5)
        assert row["F1"] == pytest.approx(2 / 3)

    def test_tolerance_below_difference(self):
        reference = _reference([("1", "r", 2021, 100)])
        predictions = _predictions([("A", "m", "s", "r", "1", 2021, 105)])
        row = _row(_aggregate(reference, predictions, tolerance=4), "A", "r", "2021")
        assert (row["TP"], row["FP"]) == (0, 1)
        assert row["F1"] == pytest.approx(0.0)


class TestFixtureCounts:
    def test_row_count(self, accuracy_df):
        # 3 region/years + 2 year roll-ups + 2 region roll-ups + 1 total, per submission
        assert len(accuracy_df) == 16

    def test_schema(self, reference_table, predictions_table):
        pairs = match(reference_table, predictions_table)
        table = aggregate(reference_table, predictions_table, pairs, 12, verbosity=1)
        assert table.schema.remove_metadata().equals(ACCURACY_SCHEMA)

    @pytest.mark.parametrize(
        "group_id,region,year,expected",
        [
            ("A", "north", "2021", (3, 4, 2, 2)),
            ("A", "south", "2021", (2, 1, 1, 0)),
            ("A", "south", "2022", (1, 0, 0, 0)),
            ("A", ALL_LABEL, "2021", (5, 5, 3, 2)),
            ("A", ALL_LABEL, "2022", (1, 0, 0, 0)),
            ("A", "north", ALL_LABEL, (3, 4, 2, 2)),
            ("A", "south", ALL_LABEL, (3, 1, 1, 0)),
            ("A", ALL_LABEL, ALL_LABEL, (6, 5, 3, 2)),
            ("B", "north", "2021", (3, 1, 1, 0)),
            ("B", "south", "2021", (2, 0, 0, 0)),
            ("B", "south", "2022", (1, 1, 1, 0)),
            ("B", ALL_LABEL, ALL_LABEL, (6, 2, 2, 0)),
        ],
    )
    def test_counts(self, accuracy_df, group_id, region, year, expected):
        row = _row(accuracy_df, group_id, region, year)
        assert (row["T"], row["P"], row["TP"], row["FP"]) == expected

    def test_ratios_north_2021(self, accuracy_df):
        row = _row(accuracy_df, "A", "north", "2021")
        assert row["Recall"] == pytest.approx(2 / 3)
        assert row["Precision"] == pytest.approx(0.5)
        assert row["F1"] == pytest.approx(2 * 0.5 * (2 / 3) / (0.5 + 2 / 3))

    def test_region_without_predictions_has_explicit_zeros(self, accuracy_df):
        row = _row(accuracy_df, "A", "south", "2022")
        assert row["P"] == 0
        assert row["Recall"] == pytest.approx(0.0)
        assert row["Precision"] == pytest.approx(0.0)
        assert row["F1"] == pytest.approx(0.0)

    def test_rollups_sum_base_rows(self, accuracy_df):
        _assert_rollups_match_base(accuracy_df)
        # 2 submissions x (2 years + 2 regions + 1 total)
        rollups = accuracy_df[(accuracy_df["region"] == ALL_LABEL) | (accuracy_df["year"] == ALL_LABEL)]
        assert len(rollups) == 10

    def test_year_rollup_sums_regions(self, accuracy_df):
        row = _row(accuracy_df, "B", ALL_LABEL, "2021")
        north = _row(accuracy_df, "B", "north", "2021")
        south = _row(accuracy_df, "B", "south", "2021")
        for col in ("T", "P", "TP", "FP"):
            assert row[col] == north[col] + south[col]

    def test_rollup_ratios_derived_from_sums(self, accuracy_df):
        row = _row(accuracy_df, "A", ALL_LABEL, ALL_LABEL)
        assert row["Recall"] == pytest.approx(3 / 6)
        assert row["Precision"] == pytest.approx(3 / 5)

    def test_invariants(self, accuracy_df):
        assert (accuracy_df["TP"] <= accuracy_df["P"]).all()
        assert (accuracy_df["TP"] <= accuracy_df["T"]).all()
        assert (accuracy_df["FP"] == accuracy_df["P"] - accuracy_df["TP"]).all()


class TestTruePositiveCounting:
    def test_prediction_shared_by_two_references_counts_once(self):
        reference = _reference([("1", "r", 2021, 100), ("1", "r", 2021, 120)])
        predictions = _predictions([("A", "m", "s", "r", "1", 2021, 110)])
        row = _row(_aggregate(reference, predictions), "A", "r", "2021")
        assert (row["T"], row["P"], row["TP"], row["FP"]) == (2, 1, 1, 0)

    def test_larger_tolerance_never_lowers_tp(self, reference_table, predictions_table):
        narrow = _aggregate(reference_table, predictions_table, tolerance=3)
        wide = _aggregate(reference_table, predictions_table, tolerance=30)
        assert (wide["TP"].to_numpy() >= narrow["TP"].to_numpy()).all()


class TestUndefinedRecall:
    @pytest.fixture
    def tables(self):
        # Predictions in a region/year without reference events (not cleaned)
        reference = _reference([("1", "r", 2021, 100)])
        predictions = _predictions(
            [
                ("A", "m", "s", "r", "1", 2021, 101),
                ("A", "m", "s", "q", "7", 2021, 150),
            ]
        )
        return reference, predictions

    def test_recall_nan_when_no_reference_events(self, tables):
        reference, predictions = tables
        with pytest.warns(UndefinedMetricWarning, match="Recall is undefined"):
            result = _aggregate(reference, predictions, verbosity=0)
        row = _row(result, "A", "q", "2021")
        assert row["T"] == 0
        assert np.isnan(row["Recall"])
        assert np.isnan(row["F1"])
        assert row["Precision"] == pytest.approx(0.0)

    def test_warning_recorded_in_metadata(self, tables):
        reference, predictions = tables
        pairs = match(reference, predictions)
        table = aggregate(reference, predictions, pairs, 12, verbosity=1)
        assert any("Recall is undefined" in message for message in get_warnings(table))


class TestClassificationMetrics:
    def test_zero_division_rules(self):
        counts = pd.DataFrame({"T": [0, 4, 3], "P": [2, 0, 3], "TP": [0, 0, 0], "FP": [2, 0, 3]})
        result = _classification_metrics(counts)
        assert np.isnan(result["Recall"][0])
        assert result["Precision"].tolist() == [0.0, 0.0, 0.0]
        assert np.isnan(result["F1"][0])
        assert result["F1"][1] == 0.0
        assert result["F1"][2] == 0.0


class TestEmptyAndInvalidInputs:
    def test_no_predictions_gives_empty_table(self, reference_table):
        result = _aggregate(reference_table, _predictions([]))
        assert result.empty
        assert list(result.columns) == ACCURACY_SCHEMA.names

    def test_invalid_tolerance(self, reference_table, predictions_table):
        pairs = match(reference_table, predictions_table)
        with pytest.raises(ValueError):
            aggregate(reference_table, predictions_table, pairs, -5)

    def test_requires_tables(self, reference_table, predictions_table):
        pairs = match(reference_table, predictions_table)
        with pytest.raises(TypeError):
            aggregate(reference_table.to_pandas(), predictions_table, pairs, 12)
