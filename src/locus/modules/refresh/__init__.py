"""Consumers that react to estimate changes."""

from .location_refresher import LocationRefresher, log_estimate

__all__ = ["LocationRefresher", "log_estimate"]
