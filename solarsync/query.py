"""
solarsync/query.py

Read-only helpers for dashboard consumers of the warehouse.

Responsibilities
----------------
- List stations and devices (devices joined to their station name).
- Return the latest telemetry sample of a device with its linked weather.
- Build a per-device report over a date range as a pandas DataFrame.

Conventions
-----------
- Report dates are whole UTC days: `from_date` starts at 00:00:00 and
  `to_date` ends at 23:59:59.
- These helpers never write.
"""

from __future__ import annotations

from datetime import datetime, time, timezone

import pandas as pd
from dateutil import parser as dtp
from sqlalchemy import JSON, text
from sqlalchemy.engine import Engine

TELEMETRY_WITH_WEATHER = """
    SELECT t.device_sn, t.collection_time, t.device_id,
           t.ac_power, t.daily_production, t.cumulative_production,
           t.data_list, t.weather_snapshot_id,
           w.ghi, w.dni, w.dhi, w.temp, w.captured_at AS weather_captured_at
    FROM telemetry_records t
    LEFT JOIN weather_snapshots w ON w.id = t.weather_snapshot_id
"""


def day_bounds(from_date: str, to_date: str) -> tuple[int, int]:
    """Return inclusive epoch-second bounds covering whole UTC days.

    Args:
        from_date: ISO date (e.g. "2026-01-30"); the range starts at 00:00:00.
        to_date: ISO date; the range ends at 23:59:59 of that day.
    """
    start = datetime.combine(dtp.isoparse(from_date).date(), time.min, tzinfo=timezone.utc)
    end = datetime.combine(dtp.isoparse(to_date).date(), time(23, 59, 59), tzinfo=timezone.utc)
    return int(start.timestamp()), int(end.timestamp())


def list_stations(engine: Engine) -> list[dict]:
    with engine.begin() as cx:
        rows = cx.execute(text("SELECT * FROM stations ORDER BY station_id")).mappings().all()
    return [dict(r) for r in rows]


def list_devices(engine: Engine) -> list[dict]:
    """Devices with their owning station's name (None if not synced yet)."""
    sql = """
        SELECT d.*, s.name AS station_name
        FROM devices d
        LEFT JOIN stations s ON s.station_id = d.station_id
        ORDER BY d.station_id, d.device_sn
    """
    with engine.begin() as cx:
        rows = cx.execute(text(sql)).mappings().all()
    return [dict(r) for r in rows]


def latest_telemetry(engine: Engine, device_sn: str) -> dict | None:
    sql = text(
        TELEMETRY_WITH_WEATHER
        + " WHERE t.device_sn = :device_sn ORDER BY t.collection_time DESC LIMIT 1"
    ).columns(data_list=JSON)
    with engine.begin() as cx:
        row = cx.execute(sql, {"device_sn": device_sn}).mappings().first()
    return dict(row) if row else None


def telemetry_report(engine: Engine, device_sn: str, from_date: str, to_date: str) -> pd.DataFrame:
    """Return a device's samples between two dates, oldest first.

    Each row carries the derived fields, the raw parameter list and the
    irradiance of the linked weather snapshot (NaN when unlinked).
    """
    start, end = day_bounds(from_date, to_date)
    sql = text(
        TELEMETRY_WITH_WEATHER
        + """
        WHERE t.device_sn = :device_sn
          AND t.collection_time >= :start AND t.collection_time <= :end
        ORDER BY t.collection_time
        """
    ).columns(data_list=JSON)

    with engine.begin() as cx:
        df = pd.read_sql(sql, cx, params={"device_sn": device_sn, "start": start, "end": end})

    if not df.empty:
        df["time"] = pd.to_datetime(df["collection_time"], unit="s", utc=True)
    return df
