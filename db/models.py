"""
db/models.py

SQLAlchemy table definitions mirroring the warehouse schema.

Responsibilities
----------------
- Provide a programmatic (SQLAlchemy Core) representation of the
  `stations`, `devices`, `telemetry_records` and `weather_snapshots` tables
  so the loaders, tests and ad-hoc scripts can reference the schema without
  raw SQL.
- Keep column names/types aligned with `db/ddl.sql`.

Conventions
-----------
- Vendor entities are keyed by their natural (vendor) identifiers.
- `telemetry_records` is keyed by (`device_sn`, `collection_time`).
- All vendor/provider timestamps are epoch seconds stored as BIGINT.
- `weather_snapshots` is append-only and uses a surrogate `id`.

Notes
-----
- Types are kept dialect-neutral (JSON rather than JSONB, `func.now()`
  defaults) so the same metadata can be created on SQLite in tests.
"""

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    BigInteger,
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    func,
)

metadata = MetaData()

# Solar plants as reported by the vendor station list.
stations = Table(
    "stations",
    metadata,
    Column("station_id", BigInteger, primary_key=True, autoincrement=False),
    Column("name", String),
    Column("type", String),
    Column("location_lat", Float),
    Column("location_lng", Float),
    Column("location_address", String),
    Column("region_timezone", String),
    Column("installed_capacity", Float),
    Column("last_update_time", BigInteger),
    Column("station_image", String),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
)

devices = Table(
    "devices",
    metadata,
    Column("device_id", BigInteger, primary_key=True, autoincrement=False),
    Column("device_sn", String, nullable=False, unique=True),
    # Vendor station id; not a foreign key so device sync never depends on
    # the station row having been written.
    Column("station_id", BigInteger, index=True),
    Column("device_type", String),
    Column("connect_status", Integer),
    Column("collection_time", BigInteger),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
)

weather_snapshots = Table(
    "weather_snapshots",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("latitude", Float),
    Column("longitude", Float),
    # Irradiance (W/m², or daily sums for the daily-aggregate variant)
    Column("ghi", Float, nullable=False, server_default="0"),
    Column("dni", Float, nullable=False, server_default="0"),
    Column("dhi", Float, nullable=False, server_default="0"),
    # Temperature / cloud metrics
    Column("temp", Float),
    Column("temp_max", Float),
    Column("temp_min", Float),
    Column("clouds", Float),
    Column("raw_json", JSON),
    Column("captured_at", BigInteger, nullable=False, index=True),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
)

telemetry_records = Table(
    "telemetry_records",
    metadata,
    Column("device_sn", String, primary_key=True),
    Column("collection_time", BigInteger, primary_key=True, autoincrement=False),
    Column("device_id", BigInteger),
    Column("weather_snapshot_id", Integer, ForeignKey("weather_snapshots.id")),
    Column("data_list", JSON),
    # Derived fields scanned out of the raw parameter list
    Column("ac_power", Float),
    Column("daily_production", Float),
    Column("cumulative_production", Float),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
)
