"""Pytest configuration shared across the test suite."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import requests
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

# Ensure the project root is on sys.path so ``import solarsync`` and
# ``import db`` work when running the test suite without installing.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.models import metadata  # noqa: E402


class DummyResponse:
    """Just enough of `requests.Response` for the clients under test."""

    def __init__(self, payload=None, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class DummySession:
    """Replays queued responses and records every call.

    Queue items may be `DummyResponse`s, exceptions (raised) or callables
    taking the call record and returning a response.
    """

    def __init__(self, *responses):
        self.queue = list(responses)
        self.calls = []

    def _next(self, call):
        self.calls.append(call)
        item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(call)
        return item

    def request(self, method, url, **kwargs):
        return self._next(dict(kwargs, method=method, url=url))

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)


@pytest.fixture
def make_response():
    return DummyResponse


@pytest.fixture
def make_session():
    return DummySession


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite warehouse created from `db.models`."""
    engine = create_engine("sqlite://", poolclass=StaticPool)
    metadata.create_all(engine)
    yield engine
    engine.dispose()
