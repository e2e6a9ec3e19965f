"""
metrics_engine.py: turns observations into volume/price percentage signals.

Two interchangeable strategies, selected per deployment:

    VelocityStrategy  ("velocity")  short-window volume rate of change,
                                    normalised to % per hour; price vs the
                                    trailing average carried by the ticker.
    LookbackStrategy  ("lookback")  volume and price change vs the minute
                                    sample ~LOOKBACK_HOURS ago; silent until
                                    that much history exists (warm-up).

Both end in: divergence = velocity_pct - price_change_pct, plus a trend point
for slope estimation and the digest.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .sample_store import Observation, PairState, SampleStore

logger = logging.getLogger(__name__)

EPS = 1e-9


def nonneg(n: Optional[float], eps: float = EPS) -> float:
    """Denominator floor: never divide by zero (or a negative base)."""
    return max(eps, n or 0.0)


def pct(n: Optional[float]) -> float:
    """Round a percentage for display; non-finite collapses to 0."""
    if n is None or not math.isfinite(n):
        return 0.0
    return round(n, 2)


@dataclass(frozen=True)
class Signals:
    velocity_pct: float
    price_change_pct: float

    @property
    def divergence_pct(self) -> float:
        return self.velocity_pct - self.price_change_pct

    def is_finite(self) -> bool:
        return math.isfinite(self.velocity_pct) and math.isfinite(self.price_change_pct)


class VelocityStrategy:
    name = "velocity"
    long_history = False

    def __init__(self, settings: Settings):
        self.window_sec = settings.rate_window_sec

    def compute(self, store: SampleStore, pair: str, obs: Observation) -> Optional[Signals]:
        # Reference is looked up before the current observation is recorded
        ref = store.find_approx_ago(pair, self.window_sec, now=obs.ts)
        if ref is None:
            return None
        dt = max(1, obs.ts - ref.ts)
        delta_volume = obs.volume - ref.volume
        velocity = (delta_volume / nonneg(ref.volume)) * (3600.0 / dt) * 100.0
        # Tickers without a trailing average fall back to the reference price
        base = obs.baseline if obs.baseline is not None else ref.price
        price_change = (obs.price - base) / nonneg(base) * 100.0
        return Signals(velocity, price_change)


class LookbackStrategy:
    name = "lookback"
    long_history = True

    def __init__(self, settings: Settings):
        self.lookback_sec = settings.lookback_hours * 3600

    def compute(self, store: SampleStore, pair: str, obs: Observation) -> Optional[Signals]:
        ref = store.find_at_or_before(pair, obs.ts - self.lookback_sec)
        if ref is None:
            return None
        velocity = (obs.volume - ref.volume) / nonneg(ref.volume) * 100.0
        price_change = (obs.price - ref.price) / nonneg(ref.price) * 100.0
        return Signals(velocity, price_change)


STRATEGIES = {
    VelocityStrategy.name: VelocityStrategy,
    LookbackStrategy.name: LookbackStrategy,
}


def build_strategy(settings: Settings):
    return STRATEGIES[settings.strategy](settings)


class MetricsEngine:
    """Owns the SampleStore and every PairState in it."""

    def __init__(self, settings: Settings, store: Optional[SampleStore] = None):
        self.settings = settings
        self.strategy = build_strategy(settings)
        self.store = store or SampleStore(
            short_horizon_sec=settings.short_horizon_sec,
            daybuf_res_sec=settings.daybuf_res_sec,
            daybuf_keep_hours=settings.daybuf_keep_hours,
        )

    def update(self, pair: str, obs: Observation) -> Optional[PairState]:
        """Apply one observation.

        Returns the PairState when fresh signals were computed, None when the
        observation was a duplicate, out of order, or the pair is warming up.
        """
        state = self.store.ensure(pair)
        last = state.last
        if last is not None:
            if obs == last:
                return None
            if obs.ts < last.ts:
                logger.debug("engine.out_of_order", extra={"event": "engine_out_of_order", "pair": pair})
                return None

        if self.strategy.long_history:
            # Lookback reference comes from the minute buffer, which must
            # include the current sample before the search
            self.store.record(pair, obs, long_history=True)
            signals = self.strategy.compute(self.store, pair, obs)
        else:
            signals = self.strategy.compute(self.store, pair, obs)
            self.store.record(pair, obs)

        state.last = obs
        if signals is None:
            logger.debug("engine.warmup", extra={"event": "engine_warmup", "pair": pair})
            return None
        if not signals.is_finite():
            logger.warning("engine.non_finite", extra={"event": "engine_non_finite", "pair": pair})
            return None

        state.velocity_pct = signals.velocity_pct
        state.price_change_pct = signals.price_change_pct
        self.store.push_trend(state, obs.ts, signals.divergence_pct)
        return state


__all__ = [
    "EPS",
    "nonneg",
    "pct",
    "Signals",
    "VelocityStrategy",
    "LookbackStrategy",
    "MetricsEngine",
    "build_strategy",
]
