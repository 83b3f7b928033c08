"""
Common plumbing for providers backed by JSON web APIs.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .base import PollingProvider, ProviderReadError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
USER_AGENT = "locus/0.1"


class HttpJsonProvider(PollingProvider):
    """
    Polling provider that fetches a JSON document per read.

    An injected `httpx.AsyncClient` is reused and left open for its owner;
    without one a short-lived client is created for each request.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        period: float = 1800.0,
        ttl: float = 3600.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(period=period, ttl=ttl, **kwargs)
        if not endpoint:
            raise ValueError(f"{type(self).__name__} requires an endpoint URL.")
        self._endpoint = endpoint
        self._client = client
        self._timeout = timeout

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def _request_json(
        self, method: str = "GET", *, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, self._endpoint, json=json, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        method, self._endpoint, json=json, headers=headers
                    )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise ProviderReadError(f"request to {self._endpoint} failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderReadError(f"invalid JSON from {self._endpoint}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ProviderReadError(f"unexpected payload from {self._endpoint}: {payload!r}")
        logger.debug("%s response: %s", self.name, payload)
        return payload


def coordinate(value: Any, field: str) -> float:
    """Coerce an API coordinate field, rejecting missing or non-numeric values."""
    if value is None or isinstance(value, bool):
        raise ProviderReadError(f"response is missing {field}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ProviderReadError(f"invalid {field}: {value!r}") from exc


__all__ = ["DEFAULT_TIMEOUT", "HttpJsonProvider", "coordinate"]
