"""
Exception and warning types raised by pymoweval, and the shared helper used to
report non-fatal conditions.
"""

import logging
import warnings


class SchemaViolationError(ValueError):
    """A required column is missing from an input table. Fatal at load time."""


class MalformedRecordWarning(UserWarning):
    """Rows with unparseable values were dropped during loading."""


class UndefinedMetricWarning(RuntimeWarning):
    """A metric could not be defined (division by zero) and was reported as NaN."""


def emit_warning(
    message: str,
    category: type[Warning],
    collected: list[str],
    logger: logging.Logger,
    verbosity: int = 0,
) -> None:
    """
    Records a non-fatal condition.

    The message is always appended to `collected` so it can travel with the
    output tables. Logging and the Python warning follow the usual verbosity
    convention: `<= 0` logs at WARNING level and calls `warnings.warn`,
    `>= 1` suppresses both.
    """
    collected.append(message)
    if verbosity <= 0:
        logger.warning(message)
        warnings.warn(message, category, stacklevel=3)
