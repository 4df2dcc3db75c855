"""
FastAPI entrypoint.

This file focuses on:
- routing
- request/response handling
- wiring together DB + archive client + predictor
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from sqlalchemy.orm import Session

from . import crud
from .archive_client import OpenMeteoArchiveClient
from .db import get_db, make_engine, make_session_factory
from .errors import ErrorKind, PredictionError
from .predictor import Clock, Predictor
from .schemas import CurrentLocationUpdate, Location, Prediction, PredictionStatus
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.NETWORK: 502,
    ErrorKind.REMOTE_STATUS: 502,
    ErrorKind.MALFORMED_RESPONSE: 502,
    ErrorKind.INSUFFICIENT_DATA: 422,
    ErrorKind.DEGENERATE_FIT: 422,
    ErrorKind.STORE_IO: 500,
    ErrorKind.CANCELLED: 409,
}


def create_app(
    settings: Optional[Settings] = None,
    archive: Optional[OpenMeteoArchiveClient] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = make_engine(settings.sqlite_path)
        app.state.session_factory = make_session_factory(engine)
        with app.state.session_factory() as db:
            crud.seed_default_locations(db)
            current = crud.get_current_location(db)

        app.state.predictor = Predictor(
            app.state.session_factory,
            archive or OpenMeteoArchiveClient(
                base=settings.archive_url,
                connect_timeout_s=settings.connect_timeout_s,
                read_timeout_s=settings.read_timeout_s,
            ),
            settings,
            clock,
        )
        if current is not None:
            app.state.predictor.set_active_location(current)
        logger.info("Started %s (db=%s)", settings.app_name, settings.sqlite_path)
        try:
            yield
        finally:
            engine.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    register_routes(app)
    return app


def get_predictor(request: Request) -> Predictor:
    return request.app.state.predictor


def current_location(db: Session = Depends(get_db)) -> Location:
    loc = crud.get_current_location(db)
    if loc is None:
        raise HTTPException(status_code=404, detail="No location selected")
    return loc


def save_and_select(db: Session, payload: Location) -> Location:
    loc = crud.add_location(db, payload)
    crud.set_current_location(db, loc)
    return loc


def select_location(db: Session, display_name: str) -> Optional[Location]:
    loc = crud.find_location(db, display_name)
    if loc is not None:
        crud.set_current_location(db, loc)
    return loc


async def run_prediction(predictor: Predictor, location: Location) -> Prediction:
    """Map prediction failures onto HTTP errors with a single message."""
    try:
        return await predictor.predict(location)
    except PredictionError as e:
        logger.warning("Prediction for %s failed (%s): %s", location.display_name, e.kind.value, e)
        raise HTTPException(
            status_code=ERROR_STATUS.get(e.kind, 500),
            detail={"error_kind": e.kind.value, "message": str(e)},
        )


def register_routes(app: FastAPI) -> None:

    # -------------------------
    # Locations
    # -------------------------

    @app.get("/api/locations", response_model=List[Location])
    def api_list_locations(db: Session = Depends(get_db)):
        """List saved locations."""
        return crud.list_locations(db)

    @app.post("/api/locations", response_model=Location)
    async def api_add_location(
        payload: Location,
        db: Session = Depends(get_db),
        predictor: Predictor = Depends(get_predictor),
    ):
        """Save a location and make it the current one."""
        loc = await asyncio.to_thread(save_and_select, db, payload)
        predictor.set_active_location(loc)
        return loc

    @app.get("/api/locations/current", response_model=Location)
    def api_get_current(loc: Location = Depends(current_location)):
        return loc

    @app.put("/api/locations/current", response_model=Location)
    async def api_set_current(
        payload: CurrentLocationUpdate,
        db: Session = Depends(get_db),
        predictor: Predictor = Depends(get_predictor),
    ):
        """Switch the current location; the mirrored model is dropped."""
        loc = await asyncio.to_thread(select_location, db, payload.display_name)
        if loc is None:
            raise HTTPException(status_code=404, detail="Location not found")
        predictor.set_active_location(loc)
        return loc

    # -------------------------
    # Prediction
    # -------------------------

    @app.get("/api/prediction", response_model=Prediction)
    async def api_predict_current(
        loc: Location = Depends(current_location),
        predictor: Predictor = Depends(get_predictor),
    ):
        """Experimental prediction of tomorrow's mean temperature at the current location."""
        return await run_prediction(predictor, loc)

    @app.post("/api/prediction", response_model=Prediction)
    async def api_predict_location(payload: Location, predictor: Predictor = Depends(get_predictor)):
        """Same as GET, for an explicit location."""
        return await run_prediction(predictor, payload)

    @app.get("/api/prediction/status", response_model=PredictionStatus)
    async def api_prediction_status(
        loc: Location = Depends(current_location),
        predictor: Predictor = Depends(get_predictor),
    ):
        return PredictionStatus(location=loc, stage=predictor.stage(loc))

    @app.delete("/api/prediction")
    async def api_cancel_prediction(
        loc: Location = Depends(current_location),
        predictor: Predictor = Depends(get_predictor),
    ):
        """Cancel the in-flight training for the current location."""
        return {"cancelled": predictor.cancel(loc)}


app = create_app()
