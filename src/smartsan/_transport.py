"""HTTP transport for the payment provider API."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from smartsan._constants import USER_AGENT
from smartsan._redact import redact_for_log
from smartsan.config import ProviderConfig
from smartsan.exceptions import ProviderApiError, ProviderTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the provider client.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`ProviderTransport`) concrete.
    """

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        payload: Mapping[str, Any] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> dict[str, Any]: ...


def _error_detail(text: str) -> str:
    """Best-effort extraction of the provider's error message."""
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return text[:200]
    if isinstance(body, dict):
        for key in ("detail", "message", "error", "errors"):
            value = body.get(key)
            if value:
                return value if isinstance(value, str) else json.dumps(value)[:200]
    return text[:200]


class ProviderTransport:
    """Bearer-authenticated JSON transport over a shared aiohttp session."""

    def __init__(self, config: ProviderConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self) -> dict[str, str]:
        return {
            "authorization": f"Bearer {self._config.secret_key}",
            "content-type": "application/json",
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        payload: Mapping[str, Any] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send a request and decode the JSON object reply.

        Raises
        ------
        ProviderApiError
            The provider answered 4xx (request rejected).
        ProviderTransportError
            Network failure, timeout, 5xx, or a body that is not a JSON object.
        """
        url = f"{self._config.base_url}{endpoint}"
        _logger.debug("%s %s payload=%s", method, url, redact_for_log(payload))

        try:
            async with self._http.request(
                method,
                url,
                json=dict(payload) if payload is not None else None,
                params=dict(params) if params is not None else None,
                headers=self._headers(),
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except TimeoutError as exc:
            raise ProviderTransportError(f"Request to {endpoint} timed out", endpoint=endpoint) from exc
        except aiohttp.ClientError as exc:
            raise ProviderTransportError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc
        except UnicodeDecodeError as exc:
            raise ProviderTransportError(f"Undecodable body from {endpoint}", endpoint=endpoint) from exc

        if 400 <= status < 500:
            detail = _error_detail(text)
            raise ProviderApiError(
                f"HTTP {status} from {endpoint}: {detail}",
                detail=detail,
                endpoint=endpoint,
            )
        if status >= 300:
            raise ProviderTransportError(
                f"HTTP {status} from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            )

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProviderTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            ) from exc

        if not isinstance(body, dict):
            raise ProviderTransportError(f"Expected a JSON object from {endpoint}", endpoint=endpoint)

        _logger.debug("%s %s -> %s %s", method, url, status, redact_for_log(body))
        return body
