"""
Ordinary least-squares fit of daily mean temperature on day-of-year.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Optional, Sequence

from .errors import DegenerateFitError, InsufficientDataError
from .schemas import HistoricalPoint, TrainedModel

logger = logging.getLogger(__name__)

MIN_TRAINING_POINTS = 100

# Below this the normal equations carry no usable information about the slope.
DENOMINATOR_FLOOR = 1e-4


def fit_temperature_model(
    points: Sequence[HistoricalPoint],
    min_points: int = MIN_TRAINING_POINTS,
    trained_at_ms: Optional[int] = None,
) -> TrainedModel:
    """
    Fit temperature_f ~ slope * day_of_year + intercept over every point.

    Raises:
    - InsufficientDataError when fewer than `min_points` points are given
      (`min_points` can raise the floor of MIN_TRAINING_POINTS, never lower it)
    - DegenerateFitError when the denominator collapses or a coefficient is not finite
    """
    n = len(points)
    min_points = max(min_points, MIN_TRAINING_POINTS)
    if n < min_points:
        raise InsufficientDataError(f"Insufficient data: only {n} points (need {min_points}+)")

    sum_x = sum_y = sum_xy = sum_x2 = 0.0
    for p in points:
        x = float(p.day_of_year)
        y = p.temperature_f
        sum_x += x
        sum_y += y
        sum_xy += x * y
        sum_x2 += x * x

    logger.debug("Training stats - n=%d sumX=%s sumY=%s sumXY=%s sumX2=%s", n, sum_x, sum_y, sum_xy, sum_x2)

    denominator = n * sum_x2 - sum_x * sum_x
    if abs(denominator) < DENOMINATOR_FLOOR:
        raise DegenerateFitError(f"Degenerate regression: denominator too small ({denominator})")

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n

    if not (math.isfinite(slope) and math.isfinite(intercept)):
        raise DegenerateFitError(f"Invalid model parameters: slope={slope}, intercept={intercept}")

    if trained_at_ms is None:
        trained_at_ms = int(time.time() * 1000)

    logger.info("Trained model: y = %sx + %s (%d points)", slope, intercept, n)
    return TrainedModel(slope=slope, intercept=intercept, trained_at=trained_at_ms, training_point_count=n)
