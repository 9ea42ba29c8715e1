from ._io_utils import get_cleaning_stats, get_warnings
from .io import (
    clean_predictions,
    clean_reference,
    export_evaluation_results,
    load_predictions,
    load_reference,
)

__all__ = [
    "load_reference",
    "load_predictions",
    "clean_reference",
    "clean_predictions",
    "export_evaluation_results",
    "get_warnings",
    "get_cleaning_stats",
]
