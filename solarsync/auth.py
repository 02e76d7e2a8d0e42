"""
solarsync/auth.py

Credential lifecycle for the Solarman OpenAPI.

Responsibilities
----------------
- Obtain a bearer token from the vendor token endpoint using the service
  credentials (app id/secret plus account email/password).
- Track the token expiry with a safety margin so requests never go out with
  a token that is about to lapse.
- Allow callers to invalidate the credential after an authorization failure
  so the next `ensure_valid()` re-authenticates.

Environment Variables
---------------------
SOLARMAN_BASE_URL
    Vendor API root. Defaults to "https://globalapi.solarmanpv.com".
SOLARMAN_APP_ID, SOLARMAN_APP_SECRET
    OpenAPI application credentials.
SOLARMAN_EMAIL, SOLARMAN_PASSWORD
    Account used to request the token.
SOLARMAN_PASSWORD_SHA256
    When "1"/"true", the password is SHA-256 hashed before it is sent.

Notes
-----
- A `TokenManager` is single-writer: it is owned by one client and is not
  safe for concurrent refreshes from several threads.
"""

from __future__ import annotations

import hashlib
import logging
import os
import time

import requests
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

BASE_URL = os.getenv("SOLARMAN_BASE_URL", "https://globalapi.solarmanpv.com")
APP_ID = os.getenv("SOLARMAN_APP_ID", "")
APP_SECRET = os.getenv("SOLARMAN_APP_SECRET", "")
EMAIL = os.getenv("SOLARMAN_EMAIL", "")
PASSWORD = os.getenv("SOLARMAN_PASSWORD", "")
HASH_PASSWORD = os.getenv("SOLARMAN_PASSWORD_SHA256", "").lower() in ("1", "true", "yes")

TOKEN_PATH = "/account/v1.0/token"
HTTP_TIMEOUT = 10  # seconds
# Subtracted from the provider TTL to absorb clock skew and in-flight requests.
EXPIRY_MARGIN = 300  # seconds


class AuthError(RuntimeError):
    """Raised when the vendor refuses or fails to issue a usable credential."""


class TokenManager:
    """Own the bearer token for the vendor API.

    The manager moves between three states:

    - ``absent``: no token held (initial state, after `invalidate()` or a
      failed refresh).
    - ``valid``: a token is held and ``now < expires_at``.
    - ``expired``: a token is held but ``now >= expires_at``.

    Args:
        base_url: Vendor API root (no trailing slash).
        app_id: OpenAPI application id, sent as the ``appId`` query param.
        app_secret: OpenAPI application secret.
        email: Account email.
        password: Account password (plain or already hashed).
        hash_password: SHA-256 the password before sending it.
        session: Optional `requests.Session`; a new one is created if omitted.
    """

    def __init__(
        self,
        base_url: str = BASE_URL,
        app_id: str = APP_ID,
        app_secret: str = APP_SECRET,
        email: str = EMAIL,
        password: str = PASSWORD,
        hash_password: bool = HASH_PASSWORD,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.app_secret = app_secret
        self.email = email
        self.password = password
        self.hash_password = hash_password
        self.session = session or requests.Session()
        self._token: str | None = None
        self._expires_at = 0.0

    @property
    def state(self) -> str:
        if self._token is None:
            return "absent"
        if time.time() >= self._expires_at:
            return "expired"
        return "valid"

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def ensure_valid(self) -> str:
        """Return a usable token, refreshing it when absent or expired."""
        if self.state != "valid":
            logger.info("Token %s; refreshing.", self.state)
            return self.refresh()
        return self._token

    def invalidate(self) -> None:
        """Drop the current token so the next `ensure_valid()` refreshes."""
        self._token = None
        self._expires_at = 0.0

    def refresh(self) -> str:
        """Request a new token from the vendor token endpoint.

        Returns:
            str: The new bearer token.

        Raises:
            AuthError: On transport failure, a non-2xx status, an unparsable
                body or a response without ``access_token``. The manager is
                left in the ``absent`` state.
        """
        self.invalidate()

        url = f"{self.base_url}{TOKEN_PATH}"
        params = {"appId": self.app_id, "language": "en"}
        body = {
            "appSecret": self.app_secret,
            "email": self.email,
            "password": self._password_for_request(),
        }

        try:
            r = self.session.post(url, params=params, json=body, timeout=HTTP_TIMEOUT)
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Token request failed: %s", exc)
            raise AuthError(f"token request failed: {exc}") from exc

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            msg = data.get("msg") if isinstance(data, dict) else None
            logger.error("Token response carried no access_token (msg=%s)", msg)
            raise AuthError(f"no access token in response: {msg or 'unknown error'}")

        try:
            ttl = float(data.get("expires_in", 0))
        except (TypeError, ValueError) as exc:
            raise AuthError(f"invalid expires_in: {data.get('expires_in')!r}") from exc

        self._token = token
        self._expires_at = time.time() + ttl - EXPIRY_MARGIN
        logger.info("Token obtained; valid for %.0fs.", max(ttl - EXPIRY_MARGIN, 0))
        return token

    def _password_for_request(self) -> str:
        if self.hash_password:
            return hashlib.sha256(self.password.encode("utf-8")).hexdigest()
        return self.password
