"""
Provider for Ichnaea-compatible geolocate APIs such as beacondb.

The service answers with a point and its own accuracy radius; confidence
is taken from the ladder rung that radius falls into.
"""

from __future__ import annotations

from typing import Any

from .base import ProviderReadError, Reading, rung_for_accuracy
from .http import HttpJsonProvider, coordinate

DEFAULT_ENDPOINT = "https://api.beacondb.net/v1/geolocate"


class IchnaeaProvider(HttpJsonProvider):
    """Asks the geolocate service to place the host by IP address."""

    name = "ichnaea"

    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        consider_ip: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(endpoint=endpoint, **kwargs)
        self._consider_ip = consider_ip

    async def read(self) -> Reading:
        payload = await self._request_json("POST", json={"considerIp": self._consider_ip})
        location = payload.get("location")
        if not isinstance(location, dict):
            raise ProviderReadError(f"no location in response: {payload.get('error', payload)}")
        lat = coordinate(location.get("lat"), "lat")
        lon = coordinate(location.get("lng"), "lng")
        accuracy = coordinate(payload.get("accuracy"), "accuracy")
        rung = rung_for_accuracy(accuracy)
        return Reading(
            lat=lat,
            lon=lon,
            alt=None,
            accuracy_meters=accuracy,
            confidence=rung.confidence,
        )


__all__ = ["DEFAULT_ENDPOINT", "IchnaeaProvider"]
