"""
solarsync/run.py

Sync orchestrator for Solarman plant telemetry.

Responsibilities
----------------
- Drive the three-level cascade: stations -> devices (per station) ->
  current telemetry (per inverter device).
- Upsert every entity by its natural key and link each telemetry sample to
  the weather snapshot that is most recent at write time.
- Isolate failures: a station-list failure aborts the run, a failure for one
  station or device is recorded and the loop moves on.
- Report each run as a `RunSummary` instead of raising.
- Expose a CLI with the two job entry points (`full-sync`, `weather`) for an
  external scheduler.

Conventions
-----------
- Runs are sequential; nothing fans out across stations or devices.
- A second trigger of the same job while it is still running is skipped.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import Enum

import requests
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .auth import AuthError, TokenManager
from .client import AuthenticatedClient, VendorClient
from .load import get_engine, latest_weather_id, upsert_devices, upsert_stations, upsert_telemetry
from .transform import device_row, is_inverter, station_row, telemetry_row
from .validate import DeviceRecord, StationRecord, validate_current_data
from .weather import WeatherSyncJob

logger = logging.getLogger(__name__)

# Failures absorbed per entity. pydantic's ValidationError is a ValueError.
SYNC_ERRORS = (AuthError, requests.RequestException, ValueError, KeyError, TypeError, SQLAlchemyError)


class Outcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class EntityResult:
    """Tagged outcome for one station, device or telemetry fetch."""

    level: str
    key: str
    outcome: Outcome
    reason: str | None = None


@dataclass
class LevelCounts:
    processed: int = 0
    skipped: int = 0
    failed: int = 0

    def add(self, outcome: Outcome) -> None:
        if outcome is Outcome.SUCCESS:
            self.processed += 1
        elif outcome is Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


@dataclass
class RunSummary:
    """Aggregated result of one full sync.

    Attributes:
        stations, devices, telemetry: Per-level processed/skipped/failed counts.
        results: Every per-entity outcome, in processing order.
        aborted: True when the run stopped early (station list failure).
        overlapped: True when the trigger was skipped because a previous run
            was still executing.
        error: Message of the error that aborted the run, if any.
        duration_s: Wall-clock duration of the run.
    """

    stations: LevelCounts = field(default_factory=LevelCounts)
    devices: LevelCounts = field(default_factory=LevelCounts)
    telemetry: LevelCounts = field(default_factory=LevelCounts)
    results: list[EntityResult] = field(default_factory=list)
    aborted: bool = False
    overlapped: bool = False
    error: str | None = None
    duration_s: float = 0.0

    def record(self, level: str, key, outcome: Outcome, reason: str | None = None) -> Outcome:
        getattr(self, level).add(outcome)
        self.results.append(EntityResult(level, str(key), outcome, reason))
        return outcome

    @property
    def ok(self) -> bool:
        return not (self.aborted or self.overlapped)

    def as_dict(self) -> dict:
        return {
            "stations": vars(self.stations).copy(),
            "devices": vars(self.devices).copy(),
            "telemetry": vars(self.telemetry).copy(),
            "aborted": self.aborted,
            "overlapped": self.overlapped,
            "error": self.error,
            "duration_s": round(self.duration_s, 3),
        }


class SyncOrchestrator:
    """Run the station -> device -> telemetry cascade against one warehouse.

    Args:
        vendor: Endpoint helper wrapping an `AuthenticatedClient`.
        engine: SQLAlchemy engine for the warehouse.
    """

    def __init__(self, vendor: VendorClient, engine: Engine) -> None:
        self.vendor = vendor
        self.engine = engine
        self._lock = threading.Lock()

    def run_full_sync(self) -> RunSummary:
        """Execute one full sync. Never raises.

        Returns:
            RunSummary: Per-level counts and per-entity outcomes.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("Full sync already running; skipping this trigger.")
            return RunSummary(overlapped=True)

        summary = RunSummary()
        started = time.monotonic()
        try:
            logger.info("Starting full sync.")
            self._sync(summary)
        except Exception as exc:
            # The run boundary: nothing escapes to the scheduler.
            logger.exception("Full sync failed unexpectedly.")
            summary.aborted = True
            summary.error = str(exc)
        finally:
            summary.duration_s = time.monotonic() - started
            self._lock.release()

        logger.info("Full sync finished: %s", summary.as_dict())
        return summary

    def _sync(self, summary: RunSummary) -> None:
        try:
            raw_stations = self.vendor.list_stations()
        except SYNC_ERRORS as exc:
            logger.error("Station list failed; aborting run: %s", exc)
            summary.aborted = True
            summary.error = str(exc)
            return

        logger.info("Found %d stations.", len(raw_stations))
        if not raw_stations:
            logger.warning("No stations returned by the vendor.")

        for raw in raw_stations:
            self.sync_station(raw, summary)

    def sync_station(self, raw: dict, summary: RunSummary) -> Outcome:
        """Upsert one station and sync its devices."""
        key = raw.get("id") if isinstance(raw, dict) else None
        try:
            station = StationRecord.model_validate(raw)
            upsert_stations(self.engine, [station_row(station)])
        except SYNC_ERRORS as exc:
            logger.error("Station %s not stored: %s", key, exc)
            return summary.record("stations", key, Outcome.FAILED, str(exc))

        try:
            raw_devices = self.vendor.list_devices(station.station_id)
        except SYNC_ERRORS as exc:
            logger.error("Device list failed for station %s: %s", station.station_id, exc)
            return summary.record("stations", station.station_id, Outcome.FAILED, str(exc))

        logger.info("Station %s: %d devices.", station.station_id, len(raw_devices))
        for raw_device in raw_devices:
            self.sync_device(raw_device, station.station_id, summary)

        return summary.record("stations", station.station_id, Outcome.SUCCESS)

    def sync_device(self, raw: dict, station_id: int, summary: RunSummary) -> Outcome:
        """Upsert one device, then fetch its telemetry if it is an inverter."""
        key = raw.get("deviceSn") if isinstance(raw, dict) else None
        try:
            device = DeviceRecord.model_validate(raw)
        except SYNC_ERRORS as exc:
            logger.error("Device %s in station %s is malformed: %s", key, station_id, exc)
            return summary.record("devices", key, Outcome.FAILED, str(exc))

        try:
            upsert_devices(self.engine, [device_row(device, station_id)])
            summary.record("devices", device.device_sn, Outcome.SUCCESS)
        except SYNC_ERRORS as exc:
            logger.error("Device %s not stored: %s", device.device_sn, exc)
            summary.record("devices", device.device_sn, Outcome.FAILED, str(exc))

        if not is_inverter(device):
            logger.debug("Skipping non-inverter device %s (%s)", device.device_sn, device.device_type)
            return summary.record("telemetry", device.device_sn, Outcome.SKIPPED, "not an inverter")

        return self.sync_telemetry(device, summary)

    def resolve_weather_id(self) -> int | None:
        """Latest weather snapshot id; a failed lookup leaves the sample unlinked."""
        try:
            return latest_weather_id(self.engine)
        except SQLAlchemyError as exc:
            logger.warning("Weather lookup failed; storing telemetry without weather: %s", exc)
            return None

    def sync_telemetry(self, device: DeviceRecord, summary: RunSummary) -> Outcome:
        """Fetch and store the current telemetry sample of one inverter."""
        try:
            data = validate_current_data(self.vendor.current_data(device.device_sn))
            if not data.data_list:
                logger.info("No data available for %s", device.device_sn)
                return summary.record("telemetry", device.device_sn, Outcome.SKIPPED, "no data")

            weather_id = self.resolve_weather_id()
            row = telemetry_row(device, data, weather_id)
            upsert_telemetry(self.engine, [row])
        except SYNC_ERRORS as exc:
            logger.error("Telemetry sync failed for %s: %s", device.device_sn, exc)
            return summary.record("telemetry", device.device_sn, Outcome.FAILED, str(exc))

        logger.info(
            "Telemetry saved for %s at %s | AC power %sW | weather %s",
            device.device_sn,
            row["collection_time"],
            row["ac_power"],
            weather_id,
        )
        return summary.record("telemetry", device.device_sn, Outcome.SUCCESS)


def build_orchestrator(engine: Engine | None = None) -> SyncOrchestrator:
    """Wire the orchestrator from environment configuration."""
    tokens = TokenManager()
    vendor = VendorClient(AuthenticatedClient(tokens))
    return SyncOrchestrator(vendor, engine or get_engine())


def configure_logging(level: str | None = None) -> None:
    """Send log records to stderr at ``LOG_LEVEL`` (default INFO)."""
    logging.basicConfig(
        level=(level or os.getenv("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def main(argv=None):
    """CLI entry point for the two scheduled jobs.

    Args:
        argv: Optional list of CLI arguments (useful for testing).

    Returns:
        int: 0 when the job completed, 1 when it was aborted or skipped.
    """
    parser = argparse.ArgumentParser(prog="solarsync.run")
    parser.add_argument("job", choices=["full-sync", "weather"], help="Job to run once")
    parser.add_argument("--log-level", help="Overrides LOG_LEVEL")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    if args.job == "weather":
        snapshot_id = WeatherSyncJob(get_engine()).fetch_and_store()
        print(f"Done. Weather snapshot: {snapshot_id}")
        return 0 if snapshot_id is not None else 1

    summary = build_orchestrator().run_full_sync()
    print(f"Done. Stats: {summary.as_dict()}")
    return 0 if summary.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
