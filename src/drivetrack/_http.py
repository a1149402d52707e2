"""HTTP transport for the backend's REST collaborators."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from drivetrack._redact import redact_for_log
from drivetrack.config import DriveTrackConfig
from drivetrack.exceptions import NetworkError

_logger = logging.getLogger(__name__)

USER_AGENT = "drivetrack/1 (+aiohttp)"


class Transport(Protocol):
    """Structural HTTP interface used by endpoint modules.

    Endpoint functions only depend on this protocol, so tests can pass a
    stub returning canned JSON.
    """

    async def get_json(self, endpoint: str, *, token: str | None = None) -> dict[str, Any]:
        ...

    async def post_form(
        self,
        endpoint: str,
        form: Mapping[str, str],
        *,
        token: str | None = None,
    ) -> dict[str, Any]:
        ...


class HttpTransport:
    """aiohttp-backed transport sending the session token as ``Authorization``."""

    def __init__(self, config: DriveTrackConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.http_timeout)

    def _headers(self, token: str | None) -> dict[str, str]:
        headers = {"accept": "application/json", "user-agent": USER_AGENT}
        if token:
            headers["authorization"] = token
        return headers

    async def get_json(self, endpoint: str, *, token: str | None = None) -> dict[str, Any]:
        return await self._request("GET", endpoint, token=token)

    async def post_form(
        self,
        endpoint: str,
        form: Mapping[str, str],
        *,
        token: str | None = None,
    ) -> dict[str, Any]:
        return await self._request("POST", endpoint, token=token, form=form)

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        token: str | None,
        form: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._config.base_url}{endpoint}"
        _logger.debug("%s %s form=%s", method, url, redact_for_log(dict(form)) if form else None)

        try:
            async with self._http.request(
                method,
                url,
                data=dict(form) if form is not None else None,
                headers=self._headers(token),
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise NetworkError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"Request to {endpoint} timed out", endpoint=endpoint) from exc

        body: Any = None
        if text:
            try:
                body = json.loads(text)
            except json.JSONDecodeError:
                body = None

        if not 200 <= status < 300:
            detail = body.get("message") if isinstance(body, dict) else None
            raise NetworkError(
                f"HTTP {status} from {endpoint}: {detail or text[:200]}",
                status_code=status,
                endpoint=endpoint,
            )

        if not isinstance(body, dict):
            raise NetworkError(f"Invalid JSON object from {endpoint}: {text[:200]}", endpoint=endpoint)

        _logger.debug("%s %s -> %s %s", method, endpoint, status, redact_for_log(body))
        return body
