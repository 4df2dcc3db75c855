"""
Tomorrow's mean temperature for a location.

Fast path: a fresh model from the in-memory mirror or the model store is
evaluated directly. Cold path: one asyncio task per location key fetches the
archive window, aggregates it, fits a new model, stores it and returns it.
Concurrent requests for the same location await the same task.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Optional, Tuple, Union

from sqlalchemy.orm import sessionmaker

from . import crud
from .aggregation import aggregate_daily, day_of_year
from .archive_client import OpenMeteoArchiveClient
from .errors import PredictionCancelled, PredictionError
from .regression import fit_temperature_model
from .schemas import Location, Prediction, PredictionFailure, PredictionStage, TrainedModel
from .settings import Settings

logger = logging.getLogger(__name__)


class Clock:
    """Wall-clock readings used by the predictor."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def local_today(self) -> date:
        return date.today()

    def utc_today(self) -> date:
        return datetime.now(timezone.utc).date()


class Predictor:
    def __init__(
        self,
        session_factory: sessionmaker,
        archive: OpenMeteoArchiveClient,
        settings: Settings,
        clock: Optional[Clock] = None,
    ):
        self.session_factory = session_factory
        self.archive = archive
        self.settings = settings
        self.clock = clock or Clock()

        self._active: Optional[Location] = None
        self._mirror: Optional[Tuple[Location, TrainedModel]] = None
        self._inflight: Dict[str, asyncio.Task] = {}
        self._waiters: Dict[str, int] = {}
        self._stages: Dict[str, PredictionStage] = {}

    # -------------------------
    # Location / progress
    # -------------------------

    def set_active_location(self, location: Location) -> None:
        """Drop the mirrored model whenever the active location changes."""
        if location != self._active:
            if self._active is not None:
                logger.debug("Location changed to %s, clearing cached model", location.display_name)
            self._mirror = None
            self._active = location

    def stage(self, location: Location) -> PredictionStage:
        return self._stages.get(location.location_key, PredictionStage.IDLE)

    def _set_stage(self, key: str, stage: PredictionStage) -> None:
        logger.debug("%s -> %s", key, stage.value)
        if stage is PredictionStage.IDLE:
            self._stages.pop(key, None)
        else:
            self._stages[key] = stage

    def cancel(self, location: Location) -> bool:
        """Cancel the in-flight training for `location`, if any."""
        task = self._inflight.get(location.location_key)
        if task is None or task.done():
            return False
        logger.info("Cancelling training for %s", location.display_name)
        return task.cancel()

    # -------------------------
    # Prediction
    # -------------------------

    async def predict_tomorrow(self, location: Location) -> Union[Prediction, PredictionFailure]:
        """Result-or-error form of predict()."""
        try:
            return await self.predict(location)
        except PredictionError as e:
            return PredictionFailure(error_kind=e.kind, message=str(e))

    async def predict(self, location: Location) -> Prediction:
        """
        Predict tomorrow's mean temperature (Fahrenheit) at `location`.

        Raises PredictionError (with its kind) on failure.
        """
        key = location.location_key
        model = self._mirrored(location)
        if model is None and key not in self._inflight:
            self._set_stage(key, PredictionStage.CHECKING_CACHE)
            try:
                model = await asyncio.to_thread(self._load, location)
            finally:
                if key not in self._inflight:
                    self._set_stage(key, PredictionStage.IDLE)

        if model is not None:
            logger.info("Using cached model for %s", location.display_name)
            self._remember(location, model)
            return self._evaluate(location, model, "cache")

        model = await self._join_training(location)
        return self._evaluate(location, model, "trained")

    def _mirrored(self, location: Location) -> Optional[TrainedModel]:
        # Same key under another display name must go through the store check.
        if self._mirror is None or self._mirror[0] != location:
            return None
        model = self._mirror[1]
        if model.is_stale(self.settings.max_model_age_ms, self.clock.now_ms()):
            self._mirror = None
            return None
        return model

    def _remember(self, location: Location, model: TrainedModel) -> None:
        if location == self._active:
            self._mirror = (location, model)

    def _evaluate(self, location: Location, model: TrainedModel, source: str) -> Prediction:
        tomorrow = self.clock.local_today() + timedelta(days=1)
        doy = day_of_year(tomorrow)
        value = model.predict(doy)
        logger.info("Prediction for %s on %s (day %d): %.1f F", location.display_name, tomorrow, doy, value)
        return Prediction(
            location=location,
            target_date=tomorrow,
            day_of_year=doy,
            temperature_f=value,
            source=source,
            model=model,
        )

    async def _join_training(self, location: Location) -> TrainedModel:
        key = location.location_key
        task = self._inflight.get(key)
        if task is None:
            logger.info("No valid cached model for %s, training new model", location.display_name)
            task = asyncio.create_task(self._train(location), name=f"train:{key}")
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        else:
            logger.debug("Joining in-flight training for %s", location.display_name)

        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or not current.cancelling()):
                raise PredictionCancelled(f"Prediction for {location.display_name} was cancelled") from None
            # The caller itself went away; stop the fetch if nobody else is waiting.
            if self._waiters.get(key, 0) <= 1 and not task.done():
                task.cancel()
            raise
        finally:
            remaining = self._waiters.get(key, 0) - 1
            if remaining > 0:
                self._waiters[key] = remaining
            else:
                self._waiters.pop(key, None)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Training for %s failed: %s", key, task.exception())

    async def _train(self, location: Location) -> TrainedModel:
        key = location.location_key
        try:
            self._set_stage(key, PredictionStage.FETCHING)
            payload = await self.archive.fetch_recent(
                location, self.clock.utc_today(), self.settings.archive_window_days
            )

            self._set_stage(key, PredictionStage.AGGREGATING)
            points = aggregate_daily(payload.times, payload.temperatures_c, self.settings.sanity_band)

            self._set_stage(key, PredictionStage.TRAINING)
            model = fit_temperature_model(
                points,
                min_points=self.settings.min_training_points,
                trained_at_ms=self.clock.now_ms(),
            )

            self._set_stage(key, PredictionStage.STORING)
            await asyncio.to_thread(self._save, location, model)

            self._set_stage(key, PredictionStage.PREDICTING)
            self._remember(location, model)
            return model
        finally:
            self._set_stage(key, PredictionStage.IDLE)

    # -------------------------
    # Store access (worker threads)
    # -------------------------

    def _load(self, location: Location) -> Optional[TrainedModel]:
        with self.session_factory() as db:
            return crud.get_model(
                db,
                location,
                max_age_ms=self.settings.max_model_age_ms,
                now_ms=self.clock.now_ms(),
                min_points=self.settings.min_training_points,
            )

    def _save(self, location: Location, model: TrainedModel) -> None:
        with self.session_factory() as db:
            crud.put_model(db, location, model)
