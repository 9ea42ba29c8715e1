"""
Pytest configuration for pymoweval tests.
"""
import sys
from pathlib import Path

import pandas as pd
import pytest

# Add the project root to Python path so tests can import pymoweval without installation
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from pymoweval.config import MowingSettings  # noqa: E402
from pymoweval.io import load_predictions, load_reference  # noqa: E402


@pytest.fixture
def default_settings() -> MowingSettings:
    """Settings with the documented defaults, independent of the environment."""
    return MowingSettings(
        tolerance=12,
        valid_mowing_range=(75, 300),
        event_min_difference=15,
        regression_true_positives_only=True,
        _env_file=None,
    )


@pytest.fixture
def reference_df() -> pd.DataFrame:
    """
    Reference events for two regions and two years.

    u5 has two events 10 days apart and is removed by the spacing rule;
    u6 has an event outside the mowing season.
    """
    return pd.DataFrame(
        {
            "unit_id": ["u1", "u1", "u2", "u3", "u3", "u4", "u5", "u5", "u6"],
            "region": ["north", "north", "north", "south", "south", "south", "north", "north", "north"],
            "year": [2021, 2021, 2021, 2021, 2021, 2022, 2021, 2021, 2021],
            "doy": [100, 160, 120, 110, 200, 150, 100, 110, 50],
        }
    )


@pytest.fixture
def predictions_df() -> pd.DataFrame:
    """
    Predictions of two submissions.

    Group A predicts u1 three times (plus an exact duplicate), u2 at 20 days
    off and u3 once. Group B predicts u1 and u4. The 'east' row has no
    reference region and is excluded during cleaning.
    """
    rows = [
        ("A", "m1", "S2", "north", "u1", 2021, 105),
        ("A", "m1", "S2", "north", "u1", 2021, 130),
        ("A", "m1", "S2", "north", "u1", 2021, 163),
        ("A", "m1", "S2", "north", "u1", 2021, 105),
        ("A", "m1", "S2", "north", "u2", 2021, 140),
        ("A", "m1", "S2", "south", "u3", 2021, 108),
        ("B", "m2", "S1", "north", "u1", 2021, 95),
        ("B", "m2", "S1", "south", "u4", 2022, 151),
        ("B", "m2", "S1", "east", "u9", 2021, 120),
    ]
    return pd.DataFrame(
        rows,
        columns=["group_id", "method", "data_source", "region", "unit_id", "year", "doy"],
    )


@pytest.fixture
def reference_table(reference_df, default_settings):
    return load_reference(reference_df, settings=default_settings)


@pytest.fixture
def predictions_table(predictions_df, reference_table, default_settings):
    return load_predictions(predictions_df, reference_table, settings=default_settings)
