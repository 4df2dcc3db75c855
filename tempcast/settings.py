from typing import Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized configuration.

    Loaded from:
    - environment variables prefixed with TEMPCAST_
    - .env file (if present)
    """
    model_config = SettingsConfigDict(env_file=".env", env_prefix="TEMPCAST_", extra="ignore")

    app_name: str = "Tempcast (experimental temperature prediction)"
    log_level: str = "INFO"

    # SQLite file path (trained models + saved locations)
    sqlite_path: str = "tempcast.sqlite3"

    # Open-Meteo historical archive
    archive_url: str = "https://archive-api.open-meteo.com/v1/archive"
    connect_timeout_s: float = 15.0
    read_timeout_s: float = 15.0

    # Training window is archive_window_days + 1 calendar days ending yesterday (UTC)
    archive_window_days: int = Field(120, ge=1)
    min_training_points: int = Field(100, ge=100)
    max_model_age_days: int = Field(7, ge=1)

    # Optional plausibility band for hourly samples, in Fahrenheit.
    # Leave both unset to accept any finite reading.
    sanity_min_f: Optional[float] = None
    sanity_max_f: Optional[float] = None

    @property
    def max_model_age_ms(self) -> int:
        return self.max_model_age_days * 24 * 60 * 60 * 1000

    @property
    def sanity_band(self) -> Optional[Tuple[float, float]]:
        if self.sanity_min_f is None and self.sanity_max_f is None:
            return None
        low = self.sanity_min_f if self.sanity_min_f is not None else float("-inf")
        high = self.sanity_max_f if self.sanity_max_f is not None else float("inf")
        return (low, high)


settings = Settings()
