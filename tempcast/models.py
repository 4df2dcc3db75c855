"""
ORM models.

We store:
- one trained model per location key (coefficients as raw IEEE-754 bits)
- the saved locations the user can switch between
- small key/value preferences (current location)
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class StoredModel(Base):
    __tablename__ = "trained_models"

    # e.g. "Austin_30.28_-97.76"
    location_key: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Display name of the location the model was trained for; validated on read.
    display_name: Mapped[str] = mapped_column(String(255))

    # Signed 64-bit integers holding the exact bit pattern of each double.
    slope_bits: Mapped[int] = mapped_column(BigInteger)
    intercept_bits: Mapped[int] = mapped_column(BigInteger)

    trained_at_ms: Mapped[int] = mapped_column(BigInteger)
    point_count: Mapped[int] = mapped_column(Integer)


class SavedLocation(Base):
    __tablename__ = "saved_locations"
    __table_args__ = (UniqueConstraint("name", "region", name="uq_saved_locations_name_region"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(128))
    region: Mapped[str] = mapped_column(String(64))
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Preference(Base):
    __tablename__ = "preferences"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(255))
