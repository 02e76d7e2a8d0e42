"""Solar telemetry and weather synchronisation modules."""

from . import auth, client, load, query, run, transform, validate, weather

__all__ = ["auth", "client", "load", "query", "run", "transform", "validate", "weather"]
