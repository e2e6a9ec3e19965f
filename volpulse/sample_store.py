"""
sample_store.py: per-pair observation history.

Each monitored pair owns a `PairState` holding:
    recent:  short horizon of raw observations (slope window multiples)
    daybuf:  minute-resolution history (~26h) for lookback comparisons
    trend:   short horizon of (ts, divergence) points for slope + digest

Buffers are time-ordered deques, so eviction is always a prefix trim.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    ts: int
    price: float
    baseline: Optional[float]
    volume: float


@dataclass(frozen=True)
class TrendPoint:
    ts: int
    diff: float


@dataclass
class AlertState:
    """Hysteresis memory for step alerts.

    `level` is bookkeeping (updated on every evaluation), `announced_level` is
    the last level that actually reached the notifier.
    """
    level: float = 0.0
    announced_level: float = 0.0
    last_fired_ms: int = 0
    hits: int = 0
    hits_window_start_ms: int = 0


@dataclass
class PairState:
    pair: str
    last: Optional[Observation] = None
    recent: deque = field(default_factory=deque)
    daybuf: deque = field(default_factory=deque)
    last_minute_bucket: Optional[int] = None
    trend: deque = field(default_factory=deque)

    # None until the first reference sample is available (warm-up)
    velocity_pct: Optional[float] = None
    price_change_pct: Optional[float] = None

    alert: AlertState = field(default_factory=AlertState)
    digest_streak: int = 0

    @property
    def divergence_pct(self) -> Optional[float]:
        if self.velocity_pct is None or self.price_change_pct is None:
            return None
        return self.velocity_pct - self.price_change_pct

    @property
    def has_metrics(self) -> bool:
        return self.last is not None and self.velocity_pct is not None


def _finite(value: Any) -> Optional[float]:
    try:
        if value is None or isinstance(value, bool):
            return None
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def make_observation(ts: Any, volume: Any, price: Any, baseline: Any = None) -> Optional[Observation]:
    """Validate raw feed values. Returns None for anything malformed."""
    t = _finite(ts)
    p = _finite(price)
    v = _finite(volume)
    if t is None or p is None or v is None:
        return None
    if p <= 0 or v < 0 or t < 0:
        return None
    b = _finite(baseline)
    if b is not None and b <= 0:
        b = None
    return Observation(ts=int(t), price=p, baseline=b, volume=v)


class SampleStore:
    """Owns every PairState; created lazily on first touch."""

    def __init__(self, short_horizon_sec: int, daybuf_res_sec: int = 60, daybuf_keep_hours: float = 26):
        self.short_horizon_sec = short_horizon_sec
        self.daybuf_res_sec = daybuf_res_sec
        self.daybuf_keep_sec = daybuf_keep_hours * 3600
        self._pairs: dict[str, PairState] = {}

    def __contains__(self, pair: str) -> bool:
        return pair in self._pairs

    def __len__(self) -> int:
        return len(self._pairs)

    def __iter__(self) -> Iterator[PairState]:
        return iter(list(self._pairs.values()))

    def pairs(self) -> list[str]:
        return list(self._pairs)

    def get(self, pair: str) -> Optional[PairState]:
        return self._pairs.get(pair)

    def ensure(self, pair: str) -> PairState:
        state = self._pairs.get(pair)
        if state is None:
            state = PairState(pair=pair)
            self._pairs[pair] = state
        return state

    # --- writes ---------------------------------------------------------

    def record(self, pair: str, obs: Observation, long_history: bool = False) -> PairState:
        state = self.ensure(pair)
        state.recent.append(obs)
        cutoff = obs.ts - self.short_horizon_sec
        while state.recent and state.recent[0].ts < cutoff:
            state.recent.popleft()
        if long_history:
            self._push_minute_sample(state, obs)
        return state

    def _push_minute_sample(self, state: PairState, obs: Observation) -> None:
        bucket = obs.ts // self.daybuf_res_sec
        if state.last_minute_bucket == bucket:
            return
        state.last_minute_bucket = bucket
        state.daybuf.append(obs)
        cutoff = obs.ts - self.daybuf_keep_sec
        while state.daybuf and state.daybuf[0].ts < cutoff:
            state.daybuf.popleft()

    def push_trend(self, state: PairState, ts: int, diff: float) -> None:
        state.trend.append(TrendPoint(ts, diff))
        while state.trend and ts - state.trend[0].ts > self.short_horizon_sec:
            state.trend.popleft()

    # --- reads ----------------------------------------------------------

    def find_at_or_before(self, pair: str, target_ts: float) -> Optional[Observation]:
        """Most recent minute sample with ts <= target_ts."""
        state = self._pairs.get(pair)
        if state is None:
            return None
        # linear scan backward (minute spacing, ~1560 steps worst-case)
        for obs in reversed(state.daybuf):
            if obs.ts <= target_ts:
                return obs
        return None

    def find_approx_ago(self, pair: str, seconds: float, now: Optional[int] = None) -> Optional[Observation]:
        """Newest recent sample at least `seconds` old, else the oldest one."""
        state = self._pairs.get(pair)
        if state is None or not state.recent:
            return None
        if now is None:
            now = state.recent[-1].ts
        target = now - seconds
        for obs in reversed(state.recent):
            if obs.ts <= target:
                return obs
        return state.recent[0]


__all__ = [
    "Observation",
    "TrendPoint",
    "AlertState",
    "PairState",
    "SampleStore",
    "make_observation",
]
