"""
solarsync/client.py

Authenticated HTTP client for the Solarman OpenAPI.

Responsibilities
---------------
- Attach a valid bearer token (from a `TokenManager`) to every vendor call.
- On a 401, invalidate the token, re-authenticate and re-issue the same call
  exactly once. A second 401 surfaces as `AuthError`.
- Surface every other failure (timeouts, connection errors, 5xx/4xx,
  non-JSON bodies) unchanged to the caller. There is no backoff here.
- Expose the three data endpoints the sync cascade needs, walking the
  vendor's page/size pagination for the list endpoints.

Notes
-----
- Every request is bounded by a fixed timeout.
- The "already retried" flag is local to one logical call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

import requests

from .auth import HTTP_TIMEOUT, AuthError, TokenManager

logger = logging.getLogger(__name__)

USER_AGENT = "solarsync/0.1"
PAGE_SIZE = 100

STATION_LIST_PATH = "/station/v1.0/list"
DEVICE_LIST_PATH = "/station/v1.0/device"
CURRENT_DATA_PATH = "/device/v1.0/currentData"


class AuthenticatedClient:
    """Issue vendor API calls with bearer auth and a single 401 retry.

    Args:
        tokens: The `TokenManager` owning the credential.
        base_url: Vendor API root; defaults to the token manager's.
        session: Optional `requests.Session`; defaults to the token manager's.
    """

    def __init__(
        self,
        tokens: TokenManager,
        base_url: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.tokens = tokens
        self.base_url = (base_url or tokens.base_url).rstrip("/")
        self.session = session or tokens.session

    def request(self, method: str, path: str, payload: dict | None = None) -> Any:
        """Send one logical call and return the decoded JSON body.

        Args:
            method: HTTP method, e.g. "POST".
            path: Path below the API root, e.g. "/station/v1.0/list".
            payload: Optional JSON body.

        Returns:
            The parsed JSON response.

        Raises:
            AuthError: If a credential cannot be obtained, or the call is
                rejected with 401 again after one re-authentication.
            requests.RequestException: Any other transport or HTTP failure.
            ValueError: If the body is not valid JSON.
        """
        url = f"{self.base_url}{path}"
        retried = False

        while True:
            token = self.tokens.ensure_valid()
            headers = {"Authorization": f"Bearer {token}", "User-Agent": USER_AGENT}
            r = self.session.request(
                method, url, json=payload or {}, headers=headers, timeout=HTTP_TIMEOUT
            )

            if r.status_code != 401:
                break

            if retried:
                logger.error("401 from %s after re-authentication; giving up.", path)
                raise AuthError(f"authorization failed twice for {path}")

            logger.warning("401 from %s; re-authenticating and retrying once.", path)
            retried = True
            self.tokens.invalidate()

        r.raise_for_status()
        return r.json()

    def post(self, path: str, payload: dict | None = None) -> Any:
        return self.request("POST", path, payload)


class VendorClient:
    """Solarman endpoints used by the sync cascade."""

    def __init__(self, api: AuthenticatedClient, page_size: int = PAGE_SIZE) -> None:
        self.api = api
        self.page_size = page_size

    def iter_pages(self, path: str, list_key: str, payload: dict | None = None) -> Iterator[list[dict]]:
        """Iterate over a paged list endpoint one page at a time.

        Stops when a page is empty, shorter than ``page_size``, or when the
        number of items seen reaches the ``total`` reported by the vendor.
        """
        page = 1
        seen = 0

        while True:
            body = dict(payload or {}, page=page, size=self.page_size)
            data = self.api.post(path, body) or {}
            if not isinstance(data, dict):
                raise ValueError(f"unexpected {path} response type {type(data).__name__}")
            items = data.get(list_key) or []
            if not items:
                break

            yield items

            seen += len(items)
            total = data.get("total")
            if len(items) < self.page_size or (total is not None and seen >= int(total)):
                break
            page += 1

    def list_stations(self) -> list[dict]:
        stations: list[dict] = []
        for items in self.iter_pages(STATION_LIST_PATH, "stationList"):
            stations.extend(items)
        return stations

    def list_devices(self, station_id: int) -> list[dict]:
        devices: list[dict] = []
        for items in self.iter_pages(DEVICE_LIST_PATH, "deviceListItems", {"stationId": station_id}):
            devices.extend(items)
        return devices

    def current_data(self, device_sn: str) -> dict:
        """Return the raw current-data payload (`collectionTime`, `dataList`)."""
        data = self.api.post(CURRENT_DATA_PATH, {"deviceSn": device_sn}) or {}
        if not isinstance(data, dict):
            raise ValueError(f"unexpected current-data response type {type(data).__name__}")
        return data
