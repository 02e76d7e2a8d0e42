"""
solarsync/transform.py

Mapping layer from validated vendor/provider models to warehouse rows.

Responsibilities
----------------
- Define `DERIVED_KEYS`, the raw telemetry parameters promoted to their own
  columns.
- Provide `derive_fields` for scanning a parameter list.
- Provide `*_row` helpers turning validated models into dicts keyed by the
  column names in `db/models.py`.
"""

from __future__ import annotations

from .validate import CurrentData, DataItem, DeviceRecord, StationRecord, WeatherSnapshot

# Mapping from Solarman parameter keys to warehouse column names.
DERIVED_KEYS = {
    "APo_t1": "ac_power",  # Total AC output power (W)
    "Etdy_ge1": "daily_production",  # Daily production (kWh)
    "Et_ge0": "cumulative_production",  # Lifetime production (kWh)
}

# Device types that report inverter telemetry.
INVERTER_TYPES = {"INVERTER"}


def is_inverter(device: DeviceRecord) -> bool:
    return (device.device_type or "").upper() in INVERTER_TYPES


def derive_fields(data_list: list[DataItem]) -> dict[str, float]:
    """Scan a raw parameter list for the derived fields.

    Missing keys (or keys with a blank value) default to 0.0. The first
    occurrence of a key wins.

    Raises:
        ValueError: If a derived key carries a non-numeric value.
    """
    out = dict.fromkeys(DERIVED_KEYS.values(), 0.0)
    seen = set()
    for item in data_list:
        col = DERIVED_KEYS.get(item.key)
        if col is None or col in seen:
            continue
        seen.add(col)
        if item.value not in (None, ""):
            out[col] = float(item.value)
    return out


def station_row(station: StationRecord) -> dict:
    return station.model_dump()


def device_row(device: DeviceRecord, station_id: int) -> dict:
    """Return a `devices` row, owned by the station being synced."""
    row = device.model_dump()
    row["station_id"] = station_id
    return row


def telemetry_row(
    device: DeviceRecord,
    data: CurrentData,
    weather_snapshot_id: int | None,
) -> dict:
    """Return a `telemetry_records` row for one non-empty sample."""
    row = {
        "device_sn": device.device_sn,
        "collection_time": data.collection_time,
        "device_id": device.device_id,
        "weather_snapshot_id": weather_snapshot_id,
        "data_list": [item.model_dump() for item in data.data_list],
    }
    row.update(derive_fields(data.data_list))
    return row


def weather_row(snapshot: WeatherSnapshot) -> dict:
    return snapshot.model_dump()
