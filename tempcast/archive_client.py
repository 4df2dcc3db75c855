"""
Open-Meteo historical archive client.

Kept separate from the predictor and the FastAPI endpoints:
- easy to test in isolation (inject an httpx transport)
- the predictor only sees validated parallel arrays or a typed error
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, List, Optional, Tuple

import httpx

from .errors import MalformedResponseError, NetworkError, RemoteStatusError
from .schemas import Location

logger = logging.getLogger(__name__)

_DATE_PREFIX = re.compile(r"\d{4}-\d{2}-\d{2}")


@dataclass(frozen=True)
class HourlyTemperatures:
    """
    Raw archive payload: hourly UTC timestamps ("YYYY-MM-DDTHH:MM") and
    temperatures in degrees Celsius. None marks a missing sample.
    """
    times: List[str]
    temperatures_c: List[Optional[float]]


def archive_window(utc_today: date, window_days: int = 120) -> Tuple[date, date]:
    """Closed interval of window_days + 1 calendar days ending yesterday."""
    end = utc_today - timedelta(days=1)
    start = end - timedelta(days=window_days)
    return start, end


def _valid_timestamp(value: Any) -> bool:
    if not isinstance(value, str) or len(value) < 10 or not _DATE_PREFIX.match(value):
        return False
    try:
        date.fromisoformat(value[:10])
    except ValueError:
        return False
    return True


def _valid_temperature(value: Any) -> bool:
    return value is None or (isinstance(value, (int, float)) and not isinstance(value, bool))


class OpenMeteoArchiveClient:
    """
    Open-Meteo archive wrapper.

    Endpoint used:
        /v1/archive?latitude=..&longitude=..&hourly=temperature_2m
                   &start_date=YYYY-MM-DD&end_date=YYYY-MM-DD&timezone=UTC

    No API key, no retries: failures go straight back to the caller.
    """

    def __init__(
        self,
        base: str = "https://archive-api.open-meteo.com/v1/archive",
        connect_timeout_s: float = 15.0,
        read_timeout_s: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base = base
        self.timeout = httpx.Timeout(connect=connect_timeout_s, read=read_timeout_s, write=read_timeout_s, pool=connect_timeout_s)
        self.transport = transport

    async def hourly_temperatures(self, location: Location, start: date, end: date) -> HourlyTemperatures:
        """
        Fetch hourly 2 m temperatures (Celsius) for the closed range [start, end].
        """
        if start > end:
            raise ValueError("start date must not be after end date")

        params = {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "hourly": "temperature_2m",
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "timezone": "UTC",
        }
        logger.debug("Archive request for %s: %s to %s", location.display_name, params["start_date"], params["end_date"])

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.get(self.base, params=params)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Archive request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Archive request failed: {e}") from e

        if r.status_code != 200:
            body = r.text
            try:
                reason = r.json().get("reason")
            except (ValueError, AttributeError):
                reason = None
            message = f"Archive request failed ({r.status_code})"
            if reason or body:
                message += f": {reason or body}"
            logger.error("Archive error for %s: %s", location.display_name, message)
            raise RemoteStatusError(message, status_code=r.status_code, body=body)

        try:
            data = r.json()
        except ValueError as e:
            raise MalformedResponseError("Archive response is not valid JSON") from e

        payload = self.parse_hourly(data)
        logger.debug("Archive returned %d hourly samples for %s", len(payload.times), location.display_name)
        return payload

    async def fetch_recent(self, location: Location, utc_today: date, window_days: int = 120) -> HourlyTemperatures:
        """Fetch the standard training window ending yesterday."""
        start, end = archive_window(utc_today, window_days)
        return await self.hourly_temperatures(location, start, end)

    @staticmethod
    def parse_hourly(data: Any) -> HourlyTemperatures:
        """
        Validate the response envelope:
            {"hourly": {"time": [...], "temperature_2m": [...]}}
        Both arrays must be present, non-empty and of equal length.
        """
        hourly = data.get("hourly") if isinstance(data, dict) else None
        if not isinstance(hourly, dict):
            raise MalformedResponseError("Archive response has no 'hourly' object")

        times = hourly.get("time")
        temps = hourly.get("temperature_2m")
        if not isinstance(times, list) or not isinstance(temps, list):
            raise MalformedResponseError("Archive response is missing 'time' or 'temperature_2m' arrays")
        if not times or not temps:
            raise MalformedResponseError("Archive response contains empty data arrays")
        if len(times) != len(temps):
            raise MalformedResponseError(
                f"Archive array length mismatch: time={len(times)}, temperature_2m={len(temps)}"
            )

        for i, t in enumerate(times):
            if not _valid_timestamp(t):
                raise MalformedResponseError(f"Invalid timestamp at index {i}: {t!r}")
        for i, v in enumerate(temps):
            if not _valid_temperature(v):
                raise MalformedResponseError(f"Invalid temperature at index {i}: {v!r}")

        return HourlyTemperatures(
            times=list(times),
            temperatures_c=[None if v is None else float(v) for v in temps],
        )
