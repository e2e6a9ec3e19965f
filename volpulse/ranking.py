"""Momentum ranking over pairs with computed metrics."""
from __future__ import annotations

from typing import Iterable, Optional

from .sample_store import PairState

SCORE_FLOOR = 0.0001


def momentum_score(velocity_pct: Optional[float], price_change_pct: Optional[float], mode: str = "ratio") -> float:
    """Volume surge relative to the price move ("ratio") or raw volume rate ("vol")."""
    vol = float(velocity_pct or 0.0)
    if mode != "ratio":
        return vol
    denom = max(SCORE_FLOOR, abs(float(price_change_pct or 0.0)))
    return vol / denom


def rank_pairs(states: Iterable[PairState], mode: str = "ratio") -> list[tuple[str, float]]:
    """Return (pair, score) sorted by score descending.

    Pairs without an observation or still warming up are left out entirely.
    Equal scores are ordered by pair name.
    """
    scored = [
        (s.pair, momentum_score(s.velocity_pct, s.price_change_pct, mode))
        for s in states
        if s.has_metrics
    ]
    scored.sort(key=lambda item: (-item[1], item[0]))
    return scored
