"""
solarsync/weather.py

Weather/irradiance snapshot job backed by the Open-Meteo forecast API.

Responsibilities
----------------
- Request the current (or near-term) irradiance and temperature for one
  configured location.
- Normalise the provider's response into a `WeatherSnapshot`, whichever of
  the supported shapes it came back in.
- Append one snapshot per successful call; failures are logged and reported
  as ``None``, never raised.

Environment Variables
---------------------
WEATHER_BASE_URL
    Forecast endpoint. Defaults to "https://api.open-meteo.com/v1/forecast".
WEATHER_LATITUDE, WEATHER_LONGITUDE
    Location of the plant. Default to 40.7128 / -74.0060.
WEATHER_TIMEZONE
    Timezone passed to the provider. Defaults to "auto".
WEATHER_MODE
    "current" (instantaneous values), "daily" (daily aggregates) or
    "radiation" (next forecast hour of detailed radiation).

Notes
-----
- Irradiance is read from `current` first, then the first `hourly` entry,
  then the first `daily` entry. GHI/DNI/DHI default to 0 when missing.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any

import requests
from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .load import insert_weather_snapshot
from .transform import weather_row
from .validate import WeatherSnapshot

load_dotenv()

logger = logging.getLogger(__name__)

BASE_URL = os.getenv("WEATHER_BASE_URL", "https://api.open-meteo.com/v1/forecast")
LATITUDE = float(os.getenv("WEATHER_LATITUDE", "40.7128"))
LONGITUDE = float(os.getenv("WEATHER_LONGITUDE", "-74.0060"))
TIMEZONE = os.getenv("WEATHER_TIMEZONE", "auto")
MODE = os.getenv("WEATHER_MODE", "current")

HTTP_TIMEOUT = 10  # seconds
USER_AGENT = "solarsync/0.1"

# Provider variables requested for each mode.
MODE_PARAMS = {
    "current": {
        "current": "shortwave_radiation,direct_normal_irradiance,diffuse_radiation,"
        "temperature_2m,cloud_cover",
    },
    "daily": {
        "daily": "shortwave_radiation_sum,temperature_2m_max,temperature_2m_min,"
        "temperature_2m_mean,weather_code",
        "forecast_days": 1,
    },
    "radiation": {
        "hourly": "shortwave_radiation,direct_normal_irradiance,diffuse_radiation",
        "forecast_hours": 1,
    },
}

# Provider field names for each snapshot column, in order of preference.
IRRADIANCE_FIELDS = {
    "ghi": ("shortwave_radiation", "shortwave_radiation_sum"),
    "dni": ("direct_normal_irradiance", "direct_normal_irradiance_instant"),
    "dhi": ("diffuse_radiation", "diffuse_radiation_instant"),
}


def _num(v) -> float | None:
    if v is None or v == "":
        return None
    if isinstance(v, (dict, list, bool)):
        raise ValueError(f"expected a number, got {type(v).__name__}")
    return float(v)


def _first(block: dict | None, field: str) -> Any:
    """Return ``block[field]`` for scalar blocks or its first item for arrays."""
    if not block or field not in block:
        return None
    value = block[field]
    if isinstance(value, list):
        return value[0] if value else None
    return value


def normalize(payload: dict[str, Any], latitude: float, longitude: float, captured_at: int) -> WeatherSnapshot:
    """Turn an Open-Meteo response into a `WeatherSnapshot`.

    Accepts the instantaneous (`current`), detailed radiation (`hourly`) and
    daily-aggregate (`daily`) response shapes, alone or combined.

    Raises:
        ValueError: If the payload is not an object, or a present field
            cannot be read as a number.
    """
    if not isinstance(payload, dict):
        raise ValueError(f"unexpected weather payload type {type(payload).__name__}")

    current = payload.get("current")
    hourly = payload.get("hourly")
    daily = payload.get("daily")

    values: dict[str, float | None] = {}
    for col, fields in IRRADIANCE_FIELDS.items():
        found = None
        for block in (current, hourly, daily):
            for field in fields:
                found = _num(_first(block, field))
                if found is not None:
                    break
            if found is not None:
                break
        values[col] = found if found is not None else 0.0

    temp_max = _num(_first(daily, "temperature_2m_max"))
    temp_min = _num(_first(daily, "temperature_2m_min"))
    temp = _num(_first(current, "temperature_2m"))
    if temp is None:
        temp = _num(_first(daily, "temperature_2m_mean"))
    if temp is None and temp_max is not None and temp_min is not None:
        temp = (temp_max + temp_min) / 2

    clouds = _num(_first(current, "cloud_cover"))
    if clouds is None:
        clouds = _num(_first(daily, "weather_code"))

    return WeatherSnapshot(
        latitude=latitude,
        longitude=longitude,
        temp=temp,
        temp_max=temp_max,
        temp_min=temp_min,
        clouds=clouds,
        raw_json=payload,
        captured_at=captured_at,
        **values,
    )


class WeatherSyncJob:
    """Fetch one weather reading and append it as a snapshot.

    Args:
        engine: SQLAlchemy engine for the warehouse.
        latitude, longitude: Location to query.
        mode: One of ``MODE_PARAMS``.
        timezone: Provider timezone parameter.
        base_url: Forecast endpoint.
        session: Optional `requests.Session`.
    """

    def __init__(
        self,
        engine: Engine,
        latitude: float = LATITUDE,
        longitude: float = LONGITUDE,
        mode: str = MODE,
        timezone: str = TIMEZONE,
        base_url: str = BASE_URL,
        session: requests.Session | None = None,
    ) -> None:
        if mode not in MODE_PARAMS:
            raise ValueError(f"unknown weather mode {mode!r}; expected one of {sorted(MODE_PARAMS)}")
        self.engine = engine
        self.latitude = latitude
        self.longitude = longitude
        self.mode = mode
        self.timezone = timezone
        self.base_url = base_url
        self.session = session or requests.Session()
        self._lock = threading.Lock()

    def params(self) -> dict[str, Any]:
        params = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timezone": self.timezone,
        }
        params.update(MODE_PARAMS[self.mode])
        return params

    def fetch(self) -> dict[str, Any]:
        r = self.session.get(
            self.base_url,
            params=self.params(),
            headers={"User-Agent": USER_AGENT},
            timeout=HTTP_TIMEOUT,
        )
        r.raise_for_status()
        return r.json()

    def fetch_and_store(self) -> int | None:
        """Fetch, normalise and store one snapshot.

        Returns:
            int | None: The new snapshot id, or ``None`` if the provider call,
            normalisation or write failed, or a previous run is still going.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("Weather sync already running; skipping this trigger.")
            return None
        try:
            return self._fetch_and_store()
        finally:
            self._lock.release()

    def _fetch_and_store(self) -> int | None:
        try:
            payload = self.fetch()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Weather provider call failed: %s", exc)
            return None

        try:
            snapshot = normalize(payload, self.latitude, self.longitude, int(time.time()))
            snapshot_id = insert_weather_snapshot(self.engine, weather_row(snapshot))
        except (ValueError, TypeError, SQLAlchemyError) as exc:
            logger.error("Weather snapshot not stored: %s", exc)
            return None

        logger.info(
            "Weather snapshot %s stored: GHI %.1f | DNI %.1f | DHI %.1f at (%s, %s)",
            snapshot_id,
            snapshot.ghi,
            snapshot.dni,
            snapshot.dhi,
            self.latitude,
            self.longitude,
        )
        return snapshot_id
