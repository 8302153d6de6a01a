"""Client for the usage relay, the server-side proxy that calls the upstream
``/v2/usage`` endpoint with the key and returns its JSON unchanged.

The relay issues a CSRF token bound to its session cookie, so one
``httpx.AsyncClient`` (which keeps cookies) must be used for ``init_session``
and every ``fetch_usage`` after it.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from keyquota.config import Settings
from keyquota.errors import RelayError
from keyquota.security import redact_key

logger = logging.getLogger(__name__)

AUTH_HEADER = "X-DeepL-Auth-Key"
CSRF_HEADER = "X-CSRF-Token"


def _safe_json(resp: httpx.Response) -> dict:
    """Parse JSON body, returning {} for non-object or invalid bodies."""
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def compose_error(body: dict, status_code: int) -> str:
    """``message`` plus ``: detail`` when the relay sent one."""
    message = body.get("message") or (f"HTTP {status_code}" if not body else "Error")
    detail = body.get("detail")
    if detail:
        message = f"{message}: {detail}"
    return str(message)


class RelayClient:
    def __init__(self, base_url: str, client: httpx.AsyncClient):
        self.base_url = base_url
        self.client = client
        self.session_token: Optional[str] = None

    async def init_session(self) -> str:
        """Fetch the CSRF token. Held in memory only."""
        try:
            resp = await self.client.get(self.base_url, params={"action": "init"})
        except httpx.HTTPError as exc:
            raise RelayError(f"{type(exc).__name__}: {exc}") from exc
        token = _safe_json(resp).get("token")
        if not resp.is_success or not isinstance(token, str) or not token:
            raise RelayError("Failed to initialize relay session", resp.status_code)
        self.session_token = token
        logger.info("Relay session initialized")
        return token

    async def fetch_usage(self, secret: str) -> dict:
        """Return the relay's usage body verbatim, or raise ``RelayError``."""
        headers = {
            AUTH_HEADER: secret,
            CSRF_HEADER: self.session_token or "",
            "Content-Type": "application/json",
        }
        # Cache-buster, the relay must never serve a stale usage figure
        params = {"t": str(int(time.time() * 1000))}
        start = time.monotonic()
        try:
            resp = await self.client.get(self.base_url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Relay request for %s failed: %s", redact_key(secret), exc)
            raise RelayError(f"{type(exc).__name__}: {exc}") from exc
        latency = (time.monotonic() - start) * 1000
        logger.debug("Relay answered %s for %s in %.0fms", resp.status_code, redact_key(secret), latency)

        if not resp.is_success:
            raise RelayError(compose_error(_safe_json(resp), resp.status_code), resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise RelayError(f"{type(exc).__name__}: relay returned a non-JSON body", resp.status_code) from exc
        if not isinstance(data, dict):
            raise RelayError("Relay returned an unexpected body", resp.status_code)
        return data


@asynccontextmanager
async def open_relay(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> AsyncIterator[RelayClient]:
    """Yield a ``RelayClient`` that owns its ``httpx.AsyncClient`` for the block."""
    async with httpx.AsyncClient(timeout=settings.timeout, max_redirects=0, transport=transport) as client:
        yield RelayClient(settings.relay_url, client)
