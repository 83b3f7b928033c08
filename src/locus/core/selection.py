"""
Selection rule deciding which of two results is the better location estimate.

Order of precedence: freshness, same-source refresh, confidence, accuracy,
recency. The incumbent keeps the estimate on a complete tie.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable

from .contracts import Result

CONFIDENCE_EPSILON = 1e-9


def supersedes(incoming: Result, current: Result | None, now: dt.datetime) -> bool:
    """Return True when `incoming` should replace `current` as the estimate."""
    if incoming.is_expired(now):
        return False
    if current is None or current.is_expired(now):
        return True
    if incoming.source == current.source:
        return True
    if abs(incoming.confidence - current.confidence) > CONFIDENCE_EPSILON:
        return incoming.confidence > current.confidence
    if incoming.accuracy_meters != current.accuracy_meters:
        return incoming.accuracy_meters < current.accuracy_meters
    return incoming.at > current.at


def select_best(results: Iterable[Result], now: dt.datetime) -> Result | None:
    """
    Pick the winner among results from distinct sources.

    Expired results are skipped. Candidates are folded in source order so
    the outcome does not depend on iteration order of the input.
    """
    best: Result | None = None
    for candidate in sorted(results, key=lambda result: result.source):
        if supersedes(candidate, best, now):
            best = candidate
    return best


__all__ = ["CONFIDENCE_EPSILON", "select_best", "supersedes"]
