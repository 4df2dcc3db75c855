"""
Pydantic schemas.

Two groups live here:
- domain records passed between the prediction components (immutable)
- request/response contracts of the REST endpoints
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .errors import ErrorKind


class Location(BaseModel):
    """A named place the prediction is made for."""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    name: str = Field(..., min_length=1, max_length=128)
    region: str = Field(..., min_length=1, max_length=64)
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)

    @computed_field
    @property
    def display_name(self) -> str:
        return f"{self.name}, {self.region}"

    @computed_field
    @property
    def location_key(self) -> str:
        # Primary key into the model store, e.g. "Austin_30.28_-97.76"
        return f"{self.name}_{self.latitude!r}_{self.longitude!r}"


class HistoricalPoint(BaseModel):
    """Mean temperature of one UTC calendar day."""
    model_config = ConfigDict(frozen=True)

    day_of_year: int = Field(..., ge=1, le=366)
    temperature_f: float = Field(..., allow_inf_nan=False)
    iso_date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")


class TrainedModel(BaseModel):
    """
    Linear model: temperature_f = slope * day_of_year + intercept.

    trained_at is milliseconds since the Unix epoch.
    """
    model_config = ConfigDict(frozen=True)

    slope: float = Field(..., allow_inf_nan=False)
    intercept: float = Field(..., allow_inf_nan=False)
    trained_at: int = Field(..., ge=0)
    training_point_count: int = Field(..., ge=100)

    def predict(self, day_of_year: int) -> float:
        return self.slope * day_of_year + self.intercept

    def is_stale(self, max_age_ms: int, now_ms: int) -> bool:
        return now_ms - self.trained_at >= max_age_ms


class PredictionStage(str, Enum):
    IDLE = "IDLE"
    CHECKING_CACHE = "CHECKING_CACHE"
    FETCHING = "FETCHING"
    AGGREGATING = "AGGREGATING"
    TRAINING = "TRAINING"
    STORING = "STORING"
    PREDICTING = "PREDICTING"


class CurrentLocationUpdate(BaseModel):
    """Switch the current location by its display name ("Austin, TX")."""
    display_name: str = Field(..., min_length=3, max_length=200)


class Prediction(BaseModel):
    """Successful prediction of tomorrow's mean temperature."""
    location: Location
    target_date: date
    day_of_year: int
    temperature_f: float
    source: Literal["cache", "trained"]
    model: TrainedModel
    experimental: bool = True


class PredictionFailure(BaseModel):
    error_kind: ErrorKind
    message: str


class PredictionStatus(BaseModel):
    location: Location
    stage: PredictionStage
