"""Extraction settings, loaded from environment variables.

Environment Variables:
    EXCEL_EXTRACTOR_LOG_LEVEL: Logging level (default: INFO)
    EXCEL_EXTRACTOR_FAIL_ON_EMPTY_RECORD: Fail a workbook when none of its
        fields could be computed (default: true)
    EXCEL_EXTRACTOR_FAIL_ON_REQUIRED_FIELD: Fail a workbook when a required
        field could not be computed (default: false)
    EXCEL_EXTRACTOR_DATE_DRIFT_TOLERANCE: Fraction of a day below a whole
        serial date that still counts as that date (default: 1e-6)
"""

import logging
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from excel_extractor.coercion import DEFAULT_DRIFT_TOLERANCE

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="EXCEL_EXTRACTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    """Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL."""

    fail_on_empty_record: bool = True
    """A workbook where no field could be computed is an error, not a skip."""

    fail_on_required_field: bool = False
    """A workbook missing any required field is an error."""

    date_drift_tolerance: float = DEFAULT_DRIFT_TOLERANCE
    """Days of floating-point drift tolerated below a whole serial date."""

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        return upper_v

    @field_validator("date_drift_tolerance")
    @classmethod
    def validate_drift_tolerance(cls, v: float) -> float:
        if not 0.0 <= v < 0.5:
            raise ValueError(f"Date drift tolerance must be in [0, 0.5), got {v}")
        return v

    @property
    def log_level_int(self) -> int:
        level: int = getattr(logging, self.log_level)
        return level


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Apply the configured log level to the package's loggers."""
    settings = settings or get_settings()
    package_logger = logging.getLogger("excel_extractor")
    package_logger.setLevel(settings.log_level_int)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)
