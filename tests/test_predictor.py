import asyncio

import httpx
import pytest

from tempcast import crud
from tempcast.errors import ErrorKind, InsufficientDataError, PredictionCancelled
from tempcast.predictor import Predictor
from tempcast.schemas import Location, PredictionFailure, PredictionStage, TrainedModel

from conftest import AUSTIN, CHICAGO, DAY_MS, NOW_MS, ArchiveStub


def cached_model(trained_at=NOW_MS):
    return TrainedModel(slope=0.1, intercept=40.0, trained_at=trained_at, training_point_count=120)


def store(session_factory, location, model):
    with session_factory() as db:
        crud.put_model(db, location, model)


def stored_row(session_factory, location):
    with session_factory() as db:
        return crud.get_model(db, location, max_age_ms=10**15, now_ms=NOW_MS)


@pytest.fixture
def make_predictor(session_factory, settings, clock):
    def make(stub: ArchiveStub) -> Predictor:
        predictor = Predictor(session_factory, stub.client(), settings, clock)
        predictor.set_active_location(AUSTIN)
        return predictor
    return make


async def test_cache_hit_skips_the_archive(make_predictor, session_factory):
    store(session_factory, AUSTIN, cached_model())
    stub = ArchiveStub()

    prediction = await make_predictor(stub).predict(AUSTIN)

    assert prediction.day_of_year == 100
    assert prediction.temperature_f == pytest.approx(50.0)
    assert prediction.source == "cache"
    assert prediction.experimental is True
    assert stub.requests == []


async def test_stale_model_is_retrained(make_predictor, session_factory, clock):
    store(session_factory, AUSTIN, cached_model(trained_at=NOW_MS - 8 * DAY_MS))
    stub = ArchiveStub()

    prediction = await make_predictor(stub).predict(AUSTIN)

    assert len(stub.requests) == 1
    assert prediction.source == "trained"
    assert prediction.model.trained_at == clock.now_ms()
    assert prediction.model.training_point_count == 121
    assert prediction.temperature_f == pytest.approx(prediction.model.predict(100))

    saved = stored_row(session_factory, AUSTIN)
    assert saved == prediction.model


async def test_cold_start_then_cached(make_predictor, session_factory):
    stub = ArchiveStub()
    predictor = make_predictor(stub)

    first = await predictor.predict(AUSTIN)
    second = await predictor.predict(AUSTIN)

    assert first.source == "trained"
    assert second.source == "cache"
    assert second.model == first.model
    assert len(stub.requests) == 1
    assert stored_row(session_factory, AUSTIN) == first.model


async def test_insufficient_data_leaves_store_unchanged(make_predictor, session_factory):
    old = cached_model(trained_at=NOW_MS - 30 * DAY_MS)
    store(session_factory, AUSTIN, old)
    stub = ArchiveStub(max_days=99)

    with pytest.raises(InsufficientDataError):
        await make_predictor(stub).predict(AUSTIN)

    assert stored_row(session_factory, AUSTIN) == old


async def test_failures_are_reported_not_raised(make_predictor):
    predictor = make_predictor(ArchiveStub(error=httpx.ConnectError("unreachable")))

    result = await predictor.predict_tomorrow(AUSTIN)

    assert isinstance(result, PredictionFailure)
    assert result.error_kind is ErrorKind.NETWORK
    assert "unreachable" in result.message
    assert predictor.stage(AUSTIN) is PredictionStage.IDLE


async def test_remote_status_is_forwarded(make_predictor):
    result = await make_predictor(ArchiveStub(status_code=503)).predict_tomorrow(AUSTIN)

    assert result.error_kind is ErrorKind.REMOTE_STATUS


async def test_concurrent_requests_share_one_fetch(make_predictor):
    stub = ArchiveStub(delay=0.2)
    predictor = make_predictor(stub)

    first, second, third = await asyncio.gather(
        predictor.predict(AUSTIN),
        predictor.predict(AUSTIN),
        predictor.predict(AUSTIN),
    )

    assert len(stub.requests) == 1
    assert first.model == second.model == third.model


async def test_cancel_stops_training_without_writing(make_predictor, session_factory):
    old = cached_model(trained_at=NOW_MS - 30 * DAY_MS)
    store(session_factory, AUSTIN, old)
    stub = ArchiveStub(block=True)
    predictor = make_predictor(stub)

    pending = asyncio.create_task(predictor.predict(AUSTIN))
    await asyncio.wait_for(stub.started.wait(), timeout=5)
    assert predictor.stage(AUSTIN) is PredictionStage.FETCHING

    assert predictor.cancel(AUSTIN) is True

    with pytest.raises(PredictionCancelled) as excinfo:
        await pending
    assert excinfo.value.kind is ErrorKind.CANCELLED
    assert stub.released.is_set()
    assert predictor.stage(AUSTIN) is PredictionStage.IDLE
    assert predictor.cancel(AUSTIN) is False
    assert stored_row(session_factory, AUSTIN) == old


async def test_abandoned_request_releases_the_connection(make_predictor):
    stub = ArchiveStub(block=True)
    predictor = make_predictor(stub)

    pending = asyncio.create_task(predictor.predict(AUSTIN))
    await asyncio.wait_for(stub.started.wait(), timeout=5)
    pending.cancel()

    with pytest.raises(asyncio.CancelledError):
        await pending
    await asyncio.wait_for(stub.released.wait(), timeout=5)


async def test_location_change_drops_the_mirror(make_predictor, session_factory):
    store(session_factory, AUSTIN, cached_model())
    predictor = make_predictor(ArchiveStub())
    assert (await predictor.predict(AUSTIN)).temperature_f == pytest.approx(50.0)

    replacement = TrainedModel(slope=0.2, intercept=30.0, trained_at=NOW_MS, training_point_count=120)
    store(session_factory, AUSTIN, replacement)

    # Same active location: the mirrored model is still served.
    assert (await predictor.predict(AUSTIN)).model == cached_model()

    predictor.set_active_location(CHICAGO)
    predictor.set_active_location(AUSTIN)

    assert (await predictor.predict(AUSTIN)).model == replacement


async def test_mirror_is_not_shared_across_display_names(make_predictor, session_factory):
    store(session_factory, AUSTIN, cached_model())
    stub = ArchiveStub()
    predictor = make_predictor(stub)
    assert (await predictor.predict(AUSTIN)).source == "cache"

    # Same coordinates and key, but stored under another display name.
    texas = Location(name="Austin", region="Texas", latitude=30.28, longitude=-97.76)
    assert texas.location_key == AUSTIN.location_key

    prediction = await predictor.predict(texas)

    assert prediction.source == "trained"
    assert prediction.location.display_name == "Austin, Texas"
    assert len(stub.requests) == 1
    assert predictor._mirror[0] == AUSTIN
    assert (await predictor.predict(AUSTIN)).model == cached_model()


async def test_models_are_kept_per_location(make_predictor, session_factory):
    store(session_factory, AUSTIN, cached_model())
    stub = ArchiveStub()
    predictor = make_predictor(stub)

    chicago = await predictor.predict(CHICAGO)
    austin = await predictor.predict(AUSTIN)

    assert chicago.source == "trained"
    assert austin.source == "cache"
    assert austin.model == cached_model()
    assert len(stub.requests) == 1
    assert stub.requests[0].url.params["latitude"] == "41.88"
