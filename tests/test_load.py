"""Tests for the database helper utilities."""

from __future__ import annotations

import logging

import pytest
from sqlalchemy import select

from db.models import stations, telemetry_records, weather_snapshots
from solarsync import load


def test_get_engine_uses_db_url(monkeypatch):
    """`get_engine` should build an engine using the configured DB_URL."""

    fake_engine = object()

    def fake_create_engine(url, pool_pre_ping):
        assert url == "postgresql://example"
        assert pool_pre_ping is True
        return fake_engine

    monkeypatch.setenv("DB_URL", "postgresql://example")
    monkeypatch.setattr(load, "create_engine", fake_create_engine)

    assert load.get_engine() is fake_engine


def test_get_engine_missing_env(monkeypatch, capsys):
    """Missing DB_URL should result in a user-facing error and exit."""

    monkeypatch.delenv("DB_URL", raising=False)

    with pytest.raises(SystemExit) as exc:
        load.get_engine()

    assert exc.value.code == 2
    assert "ERROR: DB_URL is not set" in capsys.readouterr().err


class DummyContext:
    def __init__(self, log):
        self.log = log

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, stmt, params=None):
        self.log.append((stmt, params))


class DummyEngine:
    def __init__(self):
        self.log = []

    def begin(self):
        return DummyContext(self.log)


def test_init_db_executes_sql():
    """Initialising the DB should emit the DDL for every table."""

    engine = DummyEngine()

    load.init_db(engine)

    stmt, params = engine.log[0]
    assert params is None
    for table in ("stations", "devices", "weather_snapshots", "telemetry_records"):
        assert f"CREATE TABLE IF NOT EXISTS {table}" in stmt.text


def test_upsert_rows_noop():
    engine = DummyEngine()

    assert load.upsert_telemetry(engine, []) == 0
    assert engine.log == []


def test_upsert_rows_builds_conflict_clause():
    engine = DummyEngine()
    rows = [{"device_sn": "X1", "collection_time": 1, "ac_power": 1.0}]

    assert load.upsert_telemetry(engine, rows) == 1

    stmt, params = engine.log[0]
    sql = " ".join(stmt.text.split())
    assert "INSERT INTO telemetry_records (device_sn, collection_time, ac_power)" in sql
    assert "ON CONFLICT (device_sn, collection_time) DO UPDATE SET" in sql
    assert "ac_power=EXCLUDED.ac_power" in sql
    assert "device_sn=EXCLUDED" not in sql
    assert "updated_at=CURRENT_TIMESTAMP" in sql
    assert params == rows


def station(station_id, name):
    return {
        "station_id": station_id,
        "name": name,
        "type": None,
        "location_lat": None,
        "location_lng": None,
        "location_address": None,
        "region_timezone": None,
        "installed_capacity": 10.0,
        "last_update_time": None,
        "station_image": None,
    }


def test_station_upsert_is_idempotent(sqlite_engine):
    """Two upserts with the same key leave one row holding the second payload."""

    load.upsert_stations(sqlite_engine, [station(1, "first")])
    load.upsert_stations(sqlite_engine, [station(1, "second")])
    load.upsert_stations(sqlite_engine, [station(1, "second")])

    with sqlite_engine.begin() as cx:
        rows = cx.execute(select(stations.c.station_id, stations.c.name)).all()

    assert rows == [(1, "second")]


def telemetry(collection_time, ac_power, weather_id=None):
    return {
        "device_sn": "X1",
        "collection_time": collection_time,
        "device_id": 10,
        "weather_snapshot_id": weather_id,
        "data_list": [{"key": "APo_t1", "name": None, "value": str(ac_power), "unit": "W"}],
        "ac_power": ac_power,
        "daily_production": 0.0,
        "cumulative_production": 0.0,
    }


def test_telemetry_unique_by_serial_and_time(sqlite_engine):
    load.upsert_telemetry(sqlite_engine, [telemetry(1700000000, 5.2)])
    load.upsert_telemetry(sqlite_engine, [telemetry(1700000000, 6.0)])
    load.upsert_telemetry(sqlite_engine, [telemetry(1700000300, 7.0)])

    with sqlite_engine.begin() as cx:
        rows = cx.execute(
            select(
                telemetry_records.c.collection_time,
                telemetry_records.c.ac_power,
                telemetry_records.c.data_list,
            ).order_by(telemetry_records.c.collection_time)
        ).all()

    assert [(r.collection_time, r.ac_power) for r in rows] == [(1700000000, 6.0), (1700000300, 7.0)]
    assert rows[0].data_list[0]["value"] == "6.0"


def snapshot(captured_at, ghi=0.0):
    return {
        "latitude": 1.0,
        "longitude": 2.0,
        "ghi": ghi,
        "dni": 0.0,
        "dhi": 0.0,
        "temp": None,
        "temp_max": None,
        "temp_min": None,
        "clouds": None,
        "raw_json": {"current": {"shortwave_radiation": ghi}},
        "captured_at": captured_at,
    }


def test_latest_weather_id_empty(sqlite_engine):
    assert load.latest_weather_id(sqlite_engine) is None


def test_weather_snapshots_append_and_latest_by_capture_time(sqlite_engine):
    """Snapshots are never deduplicated; the latest is chosen by capture time."""

    newest = load.insert_weather_snapshot(sqlite_engine, snapshot(1699999000, ghi=500))
    older = load.insert_weather_snapshot(sqlite_engine, snapshot(1699990000))
    load.insert_weather_snapshot(sqlite_engine, snapshot(1699990000))

    assert newest != older
    assert load.latest_weather_id(sqlite_engine) == newest

    with sqlite_engine.begin() as cx:
        count = len(cx.execute(select(weather_snapshots.c.id)).all())
        raw = cx.execute(
            select(weather_snapshots.c.raw_json).where(weather_snapshots.c.id == newest)
        ).scalar_one()

    assert count == 3
    assert raw == {"current": {"shortwave_radiation": 500}}


def test_writes_are_logged_at_debug(sqlite_engine, caplog):
    caplog.set_level(logging.DEBUG, logger="solarsync.load")

    load.upsert_stations(sqlite_engine, [station(1, "first")])
    snap_id = load.insert_weather_snapshot(sqlite_engine, snapshot(1699999000))

    messages = [r.getMessage() for r in caplog.records if r.name == "solarsync.load"]
    assert "Upserted 1 rows into stations" in messages
    assert f"Weather snapshot {snap_id} appended (captured_at=1699999000)" in messages


def test_main_init_db(monkeypatch, capsys):
    """CLI `--init-db` flag should trigger database initialisation."""

    calls = []

    monkeypatch.setattr(load, "get_engine", lambda: "engine")
    monkeypatch.setattr(load, "init_db", calls.append)

    code = load.main(["--init-db"])

    assert code == 0
    assert calls == ["engine"]
    assert "DB initialised." in capsys.readouterr().out


def test_main_no_args(monkeypatch, capsys):
    monkeypatch.setattr(load, "get_engine", lambda: "engine")

    code = load.main([])

    assert code == 0
    assert "Nothing to do" in capsys.readouterr().out
