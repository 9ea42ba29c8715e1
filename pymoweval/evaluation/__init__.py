from ._classification import aggregate
from ._count_deviation import count_deviation
from ._evaluation_utils import ALL_LABEL
from ._matching import is_true_positive, match, true_positive_pairs
from ._regression import regression_metrics
from .evaluation import evaluation

__all__ = [
    "evaluation",
    "match",
    "is_true_positive",
    "true_positive_pairs",
    "aggregate",
    "regression_metrics",
    "count_deviation",
    "ALL_LABEL",
]
