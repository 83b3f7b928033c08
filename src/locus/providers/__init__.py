"""Location providers feeding the fusion hub."""

from .base import PollingProvider, ProviderReadError, Reading
from .geoclue import GeoClueProvider
from .geoip import GeoIpProvider
from .geolocation_file import GeolocationFileProvider
from .ichnaea import IchnaeaProvider

__all__ = [
    "GeoClueProvider",
    "GeoIpProvider",
    "GeolocationFileProvider",
    "IchnaeaProvider",
    "PollingProvider",
    "ProviderReadError",
    "Reading",
]
