"""
locus - best current host location

Fuses on-device, file and IP geolocation sources into one trusted
estimate and refreshes downstream lookups when it changes.
"""

__version__ = "0.1.0"

from locus.core import Estimate, FusionHub, Result

__all__ = ["Estimate", "FusionHub", "Result"]
