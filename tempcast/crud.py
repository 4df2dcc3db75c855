"""
CRUD functions.

Two concerns share this module:
- the model store: at most one trained model per location key, returned only
  while it is valid for the asking location
- the saved-location registry and the current-location preference
"""

from __future__ import annotations

import logging
import math
import struct
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .errors import StoreIOError
from .schemas import Location, TrainedModel

logger = logging.getLogger(__name__)

CURRENT_LOCATION_KEY = "current_location"

DEFAULT_LOCATIONS = [
    Location(name="Austin", region="TX", latitude=30.28, longitude=-97.76),
    Location(name="New York", region="NY", latitude=40.71, longitude=-74.01),
    Location(name="Los Angeles", region="CA", latitude=34.05, longitude=-118.24),
    Location(name="Chicago", region="IL", latitude=41.88, longitude=-87.63),
    Location(name="Houston", region="TX", latitude=29.76, longitude=-95.37),
]


def double_to_bits(value: float) -> int:
    """Raw IEEE-754 bit pattern of a double as a signed 64-bit integer."""
    return struct.unpack("<q", struct.pack("<d", value))[0]


def bits_to_double(bits: int) -> float:
    return struct.unpack("<d", struct.pack("<q", bits))[0]


# -------------------------
# Model store
# -------------------------

def _row_to_model(row: models.StoredModel, min_points: int) -> Optional[TrainedModel]:
    """Decode a stored row; None if any field is missing or unusable."""
    try:
        slope = bits_to_double(row.slope_bits)
        intercept = bits_to_double(row.intercept_bits)
        if not (math.isfinite(slope) and math.isfinite(intercept)):
            return None
        if row.point_count is None or row.point_count < min_points:
            return None
        return TrainedModel(
            slope=slope,
            intercept=intercept,
            trained_at=row.trained_at_ms,
            training_point_count=row.point_count,
        )
    except (struct.error, TypeError, ValidationError):
        return None


def get_model(
    db: Session,
    location: Location,
    max_age_ms: int,
    now_ms: int,
    min_points: int = 100,
) -> Optional[TrainedModel]:
    """
    Return the stored model for `location`, or None when there is none,
    it is unreadable, it belongs to another display name, or it is stale.
    """
    try:
        row = db.get(models.StoredModel, location.location_key)
    except SQLAlchemyError as e:
        raise StoreIOError(f"Could not read model store: {e}") from e

    if row is None:
        logger.debug("No cached model for %s", location.display_name)
        return None

    if row.display_name != location.display_name:
        logger.info("Cached model is for a different location: %s vs %s", row.display_name, location.display_name)
        return None

    model = _row_to_model(row, min_points)
    if model is None:
        logger.warning("Stored model for %s is unreadable, ignoring it", location.display_name)
        return None

    if model.is_stale(max_age_ms, now_ms):
        logger.info("Cached model for %s is stale, will retrain", location.display_name)
        return None

    return model


def put_model(db: Session, location: Location, model: TrainedModel) -> None:
    """Replace the record for `location` in a single transaction."""
    row = models.StoredModel(
        location_key=location.location_key,
        display_name=location.display_name,
        slope_bits=double_to_bits(model.slope),
        intercept_bits=double_to_bits(model.intercept),
        trained_at_ms=model.trained_at,
        point_count=model.training_point_count,
    )
    try:
        db.merge(row)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreIOError(f"Could not save model: {e}") from e

    logger.info(
        "Saved model for %s: slope=%s, intercept=%s, trained_at=%d, points=%d",
        location.display_name, model.slope, model.intercept, model.trained_at, model.training_point_count,
    )


# -------------------------
# Saved locations
# -------------------------

def seed_default_locations(db: Session) -> None:
    """Insert the default cities on first start."""
    if db.query(models.SavedLocation).first() is not None:
        return
    for loc in DEFAULT_LOCATIONS:
        db.add(models.SavedLocation(name=loc.name, region=loc.region, latitude=loc.latitude, longitude=loc.longitude))
    db.commit()


def list_locations(db: Session) -> List[Location]:
    rows = db.query(models.SavedLocation).order_by(models.SavedLocation.id).all()
    return [Location.model_validate(r) for r in rows]


def find_location(db: Session, display_name: str) -> Optional[Location]:
    """Look a saved location up by "Name, Region"."""
    for loc in list_locations(db):
        if loc.display_name == display_name:
            return loc
    return None


def add_location(db: Session, location: Location) -> Location:
    """Save `location`; an already saved display name is returned unchanged."""
    existing = find_location(db, location.display_name)
    if existing is not None:
        return existing

    db.add(models.SavedLocation(
        name=location.name,
        region=location.region,
        latitude=location.latitude,
        longitude=location.longitude,
    ))
    db.commit()
    return location


def get_current_location(db: Session) -> Optional[Location]:
    """The selected location, falling back to the first saved one."""
    pref = db.get(models.Preference, CURRENT_LOCATION_KEY)
    if pref is not None:
        loc = find_location(db, pref.value)
        if loc is not None:
            return loc
    locations = list_locations(db)
    return locations[0] if locations else None


def set_current_location(db: Session, location: Location) -> None:
    db.merge(models.Preference(key=CURRENT_LOCATION_KEY, value=location.display_name))
    db.commit()
