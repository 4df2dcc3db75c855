"""
Hourly -> daily aggregation.

Turns the archive's parallel hourly arrays (Celsius) into one mean
Fahrenheit value per UTC calendar day, ordered chronologically.
"""

from __future__ import annotations

import logging
import math
import re
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import InsufficientDataError
from .schemas import HistoricalPoint

logger = logging.getLogger(__name__)

_DATE_KEY = re.compile(r"\d{4}-\d{2}-\d{2}")


def celsius_to_fahrenheit(c: float) -> float:
    return c * 9.0 / 5.0 + 32.0


def day_of_year(d: date) -> int:
    """Ordinal day within the year: 1 Jan = 1, 31 Dec = 365 or 366."""
    return d.timetuple().tm_yday


def _parse_date_key(date_key: str) -> Optional[date]:
    if not _DATE_KEY.fullmatch(date_key):
        return None
    try:
        return date.fromisoformat(date_key)
    except ValueError:
        return None


def _finite(value: Optional[float]) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def aggregate_daily(
    times: Sequence[Optional[str]],
    temperatures_c: Sequence[Optional[float]],
    sanity_band: Optional[Tuple[float, float]] = None,
) -> List[HistoricalPoint]:
    """
    Group hourly samples by the date prefix of their timestamp and average them.

    A sample is dropped when its timestamp is missing or shorter than
    "YYYY-MM-DD", when its temperature is missing or not finite, or when the
    converted value falls outside `sanity_band` (low_f, high_f).

    Raises InsufficientDataError when nothing survives.
    """
    if not times or not temperatures_c:
        raise InsufficientDataError("No valid data: archive payload is empty")

    buckets: Dict[str, List[float]] = defaultdict(list)
    rejected = 0
    out_of_band = 0

    for i in range(min(len(times), len(temperatures_c))):
        stamp = times[i]
        if not isinstance(stamp, str) or len(stamp) < 10:
            rejected += 1
            continue

        temp_c = temperatures_c[i]
        if not _finite(temp_c):
            rejected += 1
            continue

        temp_f = celsius_to_fahrenheit(temp_c)
        if sanity_band is not None and not (sanity_band[0] <= temp_f <= sanity_band[1]):
            out_of_band += 1
            continue

        buckets[stamp[:10]].append(temp_f)

    if rejected:
        logger.warning("Rejected %d hourly samples (missing timestamp or temperature)", rejected)
    if out_of_band:
        logger.warning("Rejected %d hourly samples outside the sanity band %s", out_of_band, sanity_band)

    points: List[HistoricalPoint] = []
    for date_key in sorted(buckets):
        temps = [t for t in buckets[date_key] if math.isfinite(t)]
        if not temps:
            continue

        mean_f = sum(temps) / len(temps)
        if not math.isfinite(mean_f):
            logger.warning("Non-finite daily mean for %s, skipping", date_key)
            continue

        day = _parse_date_key(date_key)
        if day is None:
            logger.warning("Unparseable date key %r, skipping", date_key)
            continue

        points.append(HistoricalPoint(day_of_year=day_of_year(day), temperature_f=mean_f, iso_date=date_key))

    if not points:
        raise InsufficientDataError("No valid data: every hourly sample was rejected")

    logger.debug(
        "Aggregated %d daily points (%s to %s)",
        len(points), points[0].iso_date, points[-1].iso_date,
    )
    return points
