"""
solarsync/validate.py

Validation and typing layer for raw vendor and weather payloads.

Responsibilities
----------------
- Define pydantic models for the Solarman station, device and current-data
  records, mapping the vendor's camelCase keys onto snake_case attributes.
- Define the normalised `WeatherSnapshot` model written by the weather job.
- Coerce loosely typed vendor values (numbers sent as strings, blanks) so the
  transform/load stages only see clean types.

Conventions
-----------
- Unknown vendor keys are ignored.
- Parameter values in `dataList` are kept as strings, exactly like the
  vendor sends them; numeric parsing of the derived fields happens in
  `solarsync/transform.py`.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class VendorModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StationRecord(VendorModel):
    """One entry of the vendor station list."""

    station_id: int = Field(alias="id")
    name: str | None = None
    type: str | None = None
    location_lat: float | None = Field(default=None, alias="locationLat")
    location_lng: float | None = Field(default=None, alias="locationLng")
    location_address: str | None = Field(default=None, alias="locationAddress")
    region_timezone: str | None = Field(default=None, alias="regionTimezone")
    installed_capacity: float | None = Field(default=None, alias="installedCapacity")
    last_update_time: int | None = Field(default=None, alias="lastUpdateTime")
    station_image: str | None = Field(default=None, alias="stationImage")

    @field_validator("location_lat", "location_lng", "installed_capacity", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return None if v == "" else v

    @field_validator("last_update_time", mode="before")
    @classmethod
    def truncate_epoch(cls, v):
        """Update times arrive as fractional epoch seconds; keep whole seconds."""
        if v in (None, ""):
            return None
        return int(float(v))


class DeviceRecord(VendorModel):
    """One entry of a station's device list."""

    device_id: int = Field(alias="deviceId")
    device_sn: str = Field(alias="deviceSn")
    device_type: str | None = Field(default=None, alias="deviceType")
    connect_status: int | None = Field(default=None, alias="connectStatus")
    collection_time: int | None = Field(default=None, alias="collectionTime")
    station_id: int | None = Field(default=None, alias="stationId")


class DataItem(VendorModel):
    """A single raw telemetry parameter, e.g. ``{"key": "APo_t1", ...}``."""

    key: str
    name: str | None = None
    value: str | None = None
    unit: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def stringify(cls, v):
        """The vendor sends most values as strings but not all of them."""
        if v is None or isinstance(v, str):
            return v
        return str(v)


class CurrentData(VendorModel):
    """Response of the device current-data endpoint."""

    collection_time: int | None = Field(default=None, alias="collectionTime")
    data_list: list[DataItem] = Field(default_factory=list, alias="dataList")

    @field_validator("data_list", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return [] if v is None else v

    @model_validator(mode="after")
    def require_time_with_data(self):
        """A sample with parameters must say when it was collected."""
        if self.data_list and self.collection_time is None:
            raise ValueError("collectionTime is missing from a non-empty sample")
        return self


class WeatherSnapshot(BaseModel):
    """Normalised weather/irradiance reading ready for storage."""

    latitude: float
    longitude: float
    ghi: float = 0.0
    dni: float = 0.0
    dhi: float = 0.0
    temp: float | None = None
    temp_max: float | None = None
    temp_min: float | None = None
    clouds: float | None = None
    raw_json: dict[str, Any]
    captured_at: int


def validate_current_data(payload: dict[str, Any]) -> CurrentData:
    """Validate a raw current-data payload into `CurrentData`.

    Raises:
        pydantic.ValidationError: If the payload is malformed, or carries
            parameters without a ``collectionTime``.
    """
    return CurrentData.model_validate(payload)
