"""
IP geolocation provider for freegeoip-style JSON endpoints.

Accuracy and confidence come from how specific the answer is: each
populated field from country to postal code moves one rung up the ladder.
"""

from __future__ import annotations

from typing import Any

from .base import CITY, COUNTRY, POSTAL, REGION, UNKNOWN, Reading, Rung
from .http import HttpJsonProvider, coordinate

DEFAULT_ENDPOINT = "https://reallyfreegeoip.org/json/"


def specificity(payload: dict[str, Any]) -> Rung:
    """Most specific ladder rung supported by the populated response fields."""
    rung = UNKNOWN
    if payload.get("country_code"):
        rung = COUNTRY
    if payload.get("region_code"):
        rung = REGION
    if payload.get("city"):
        rung = CITY
    if payload.get("zip_code"):
        rung = POSTAL
    return rung


class GeoIpProvider(HttpJsonProvider):
    """Locates the host by its public IP address."""

    name = "geoip"

    def __init__(self, *, endpoint: str = DEFAULT_ENDPOINT, **kwargs: Any) -> None:
        super().__init__(endpoint=endpoint, **kwargs)

    async def read(self) -> Reading:
        payload = await self._request_json("GET")
        lat = coordinate(payload.get("latitude"), "latitude")
        lon = coordinate(payload.get("longitude"), "longitude")
        rung = specificity(payload)
        return Reading(
            lat=lat,
            lon=lon,
            alt=None,
            accuracy_meters=rung.accuracy_meters,
            confidence=rung.confidence,
        )


__all__ = ["DEFAULT_ENDPOINT", "GeoIpProvider", "specificity"]
