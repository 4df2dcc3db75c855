import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional

import httpx
import pytest

from tempcast.archive_client import OpenMeteoArchiveClient
from tempcast.db import make_engine, make_session_factory
from tempcast.predictor import Clock
from tempcast.schemas import Location
from tempcast.settings import Settings

AUSTIN = Location(name="Austin", region="TX", latitude=30.28, longitude=-97.76)
CHICAGO = Location(name="Chicago", region="IL", latitude=41.88, longitude=-87.63)

DAY_MS = 24 * 60 * 60 * 1000

# 2024-04-08 is day 99 of a leap year, so "tomorrow" is day 100.
TODAY = date(2024, 4, 8)
NOW_MS = int(datetime(2024, 4, 8, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)


class FixedClock(Clock):
    def __init__(self, now_ms: int = NOW_MS, today: date = TODAY):
        self.now = now_ms
        self.today = today

    def now_ms(self) -> int:
        return self.now

    def local_today(self) -> date:
        return self.today

    def utc_today(self) -> date:
        return self.today


def hourly_payload(start: date, days: int, temp_c: Callable[[date, int], Optional[float]]) -> dict:
    times: List[str] = []
    temps: List[Optional[float]] = []
    for offset in range(days):
        day = start + timedelta(days=offset)
        for hour in range(24):
            times.append(f"{day.isoformat()}T{hour:02d}:00")
            temps.append(temp_c(day, hour))
    return {
        "latitude": 30.28,
        "longitude": -97.76,
        "timezone": "GMT",
        "hourly_units": {"time": "iso8601", "temperature_2m": "°C"},
        "hourly": {"time": times, "temperature_2m": temps},
    }


def seasonal_temp(day: date, hour: int) -> float:
    # Warming by 0.1 C per day since the start of December, plus a daily cycle.
    return (day - date(2023, 12, 1)).days * 0.1 + (hour - 12) * 0.05


class ArchiveStub:
    """
    httpx MockTransport handler standing in for the Open-Meteo archive.

    Serves hourly data for the requested start_date/end_date (optionally
    truncated to `max_days`), or a fixed status/exception.
    """

    def __init__(
        self,
        temp_c: Callable[[date, int], Optional[float]] = seasonal_temp,
        max_days: Optional[int] = None,
        status_code: int = 200,
        error: Optional[Exception] = None,
        block: bool = False,
        delay: float = 0.0,
    ):
        self.temp_c = temp_c
        self.max_days = max_days
        self.status_code = status_code
        self.error = error
        self.block = block
        self.delay = delay
        self.requests: List[httpx.Request] = []
        self.started = asyncio.Event()
        self.released = asyncio.Event()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.started.set()
        if self.block:
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                self.released.set()
                raise
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": True, "reason": "Parameter 'latitude' is out of range"})

        start = date.fromisoformat(request.url.params["start_date"])
        end = date.fromisoformat(request.url.params["end_date"])
        days = (end - start).days + 1
        if self.max_days is not None:
            days = min(days, self.max_days)
        return httpx.Response(200, json=hourly_payload(start, days, self.temp_c))

    def client(self) -> OpenMeteoArchiveClient:
        return OpenMeteoArchiveClient(transport=httpx.MockTransport(self))


@pytest.fixture
def settings(tmp_path):
    return Settings(sqlite_path=str(tmp_path / "tempcast-test.sqlite3"))


@pytest.fixture
def engine(settings):
    engine = make_engine(settings.sqlite_path)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FixedClock()
