"""
Provider reading an operator-maintained location file.

The file holds one number per non-blank line in the fixed order latitude,
longitude, altitude, accuracy in meters. File input is treated as ground
truth, so every reading carries full confidence.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from .base import PollingProvider, ProviderReadError, Reading

logger = logging.getLogger(__name__)

FILE_CONFIDENCE = 1.0


def parse_location_text(text: str) -> tuple[float, float, float, float]:
    """Parse latitude, longitude, altitude and accuracy from file contents."""
    values: list[float] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            values.append(float(line))
        except ValueError as exc:
            raise ProviderReadError(f"invalid number {line!r}") from exc
    if len(values) < 4:
        raise ProviderReadError(f"expected 4 values, found {len(values)}")
    lat, lon, alt, accuracy = values[:4]
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise ProviderReadError(f"coordinates out of range: {lat}, {lon}")
    if accuracy < 0:
        raise ProviderReadError(f"negative accuracy {accuracy}")
    return lat, lon, alt, accuracy


class GeolocationFileProvider(PollingProvider):
    """Polls a plain-text location file on a short period."""

    name = "geolocation_file"

    def __init__(
        self,
        path: str | Path,
        *,
        period: float = 120.0,
        ttl: float = 900.0,
        **kwargs,
    ) -> None:
        super().__init__(period=period, ttl=ttl, **kwargs)
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    async def read(self) -> Reading:
        try:
            text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ProviderReadError(f"cannot read {self._path}: {exc}") from exc
        try:
            lat, lon, alt, accuracy = parse_location_text(text)
        except ProviderReadError as exc:
            raise ProviderReadError(f"{self._path}: {exc}") from exc
        return Reading(
            lat=lat,
            lon=lon,
            alt=alt,
            accuracy_meters=accuracy,
            confidence=FILE_CONFIDENCE,
        )


__all__ = ["FILE_CONFIDENCE", "GeolocationFileProvider", "parse_location_text"]
