"""
pymoweval: accuracy evaluation of predicted mowing events against reference data.
"""

from .config import MowingSettings, get_settings
from .errors import MalformedRecordWarning, SchemaViolationError, UndefinedMetricWarning

__version__ = "0.1.0"

__all__ = [
    "MowingSettings",
    "get_settings",
    "SchemaViolationError",
    "MalformedRecordWarning",
    "UndefinedMetricWarning",
]
