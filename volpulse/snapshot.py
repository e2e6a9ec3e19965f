"""Read-only projection of engine state for the dashboard and API clients."""
from __future__ import annotations

import time
from typing import Iterable, Optional

from .config import Settings
from .metrics_engine import pct
from .ranking import momentum_score, rank_pairs
from .sample_store import PairState

TOP_K = 5


def _pair_entry(state: PairState, rank_mode: str) -> dict:
    last = state.last
    warming = not state.has_metrics
    entry = {
        "ts": last.ts,
        "price": last.price,
        "baseline": last.baseline,
        "volume": last.volume,
        "warming_up": warming,
        "velocity_pct": None,
        "price_change_pct": None,
        "divergence_pct": None,
        "score": None,
        "alert_level": state.alert.level,
        "digest_streak": state.digest_streak,
    }
    if not warming:
        entry.update(
            velocity_pct=pct(state.velocity_pct),
            price_change_pct=pct(state.price_change_pct),
            divergence_pct=pct(state.divergence_pct),
            score=pct(momentum_score(state.velocity_pct, state.price_change_pct, rank_mode)),
        )
    return entry


def build_snapshot(
    states: Iterable[PairState],
    settings: Settings,
    subscribed: Optional[int] = None,
    now: Optional[float] = None,
) -> dict:
    """Never mutates the states it reads."""
    states = [s for s in states if s.last is not None]
    pairs = {s.pair: _pair_entry(s, settings.rank_mode) for s in states}
    ranked = [pair for pair, _ in rank_pairs(states, settings.rank_mode)]
    return {
        "ts": int(now if now is not None else time.time()),
        "meta": {
            "rank_mode": settings.rank_mode,
            "strategy": settings.strategy,
            "quote": settings.quote,
            "pair_count": len(pairs),
            "subscribed": subscribed if subscribed is not None else len(pairs),
            "rate_window_sec": settings.rate_window_sec,
            "lookback_hours": settings.lookback_hours,
            "short_horizon_sec": settings.short_horizon_sec,
        },
        "pairs": pairs,
        "ranked": ranked,
        "top": ranked[:TOP_K],
    }
