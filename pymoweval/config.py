"""
Runtime configuration for the evaluation core.

Values are read from the environment or a ``.env`` file. Each setting has a
prefixed name and, for the three mowing constants, a bare name as well, e.g.
``MOWEVAL_TOLERANCE=10`` or ``TOLERANCE=10``, and
``MOWEVAL_VALID_MOWING_RANGE='[60, 310]'`` or ``VALID_MOWING_RANGE='[60, 310]'``.
The prefixed name wins when both are set.
Every public function also accepts these values as keyword arguments, which
take precedence over the settings.
"""

from functools import lru_cache

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MowingSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MOWEVAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Maximum day difference for a prediction to count as a true positive
    tolerance: int = Field(
        default=12, ge=0, validation_alias=AliasChoices("MOWEVAL_TOLERANCE", "TOLERANCE")
    )
    # Inclusive day-of-year interval of the mowing season
    valid_mowing_range: tuple[int, int] = Field(
        default=(75, 300),
        validation_alias=AliasChoices("MOWEVAL_VALID_MOWING_RANGE", "VALID_MOWING_RANGE"),
    )
    # Minimum spacing between consecutive reference events of one unit/year
    event_min_difference: int = Field(
        default=15,
        ge=0,
        validation_alias=AliasChoices("MOWEVAL_EVENT_MIN_DIFFERENCE", "EVENT_MIN_DIFFERENCE"),
    )
    # Compute MAE/bias/r over true positives only (False: over all matched pairs)
    regression_true_positives_only: bool = True

    @model_validator(mode="after")
    def _check_range(self) -> "MowingSettings":
        low, high = self.valid_mowing_range
        if low > high:
            raise ValueError(
                f"valid_mowing_range lower bound ({low}) is greater than upper bound ({high})."
            )
        return self


@lru_cache
def get_settings() -> MowingSettings:
    """Returns the process-wide settings, read once from the environment."""
    return MowingSettings()


def resolve_setting(value, settings: MowingSettings | None, name: str):
    """Returns `value` unless it is None, else the named field of `settings`."""
    if value is not None:
        return value
    if settings is None:
        settings = get_settings()
    return getattr(settings, name)
