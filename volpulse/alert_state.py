"""
alert_state.py: stepwise divergence alerts with level hysteresis.

The divergence is snapped to a lattice: 0, ±threshold, ±(threshold + step), ...
An alert is only considered when the quantized level changes, and the
notification side-effect is gated by a per-pair cooldown. Level bookkeeping is
updated on every evaluation regardless of the cooldown.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .config import Settings
from .metrics_engine import pct
from .sample_store import PairState

logger = logging.getLogger(__name__)


class AlertKind(str, Enum):
    STEP = "step"
    DISARM = "disarm"


@dataclass
class AlertEvent:
    pair: str
    kind: AlertKind
    level: float
    previous_level: float
    delta: float
    divergence_pct: float
    velocity_pct: float
    price_change_pct: float
    trend_per_min: float
    at_ms: int
    suppressed: bool = False
    reason: str = ""

    @property
    def direction(self) -> str:
        return "up" if self.delta > 0 else "down"

    def as_dict(self) -> dict[str, Any]:
        return {
            "pair": self.pair,
            "kind": self.kind.value,
            "direction": self.direction if self.kind is AlertKind.STEP else None,
            "level": self.level,
            "previous_level": self.previous_level,
            "delta": self.delta,
            "divergence_pct": pct(self.divergence_pct),
            "velocity_pct": pct(self.velocity_pct),
            "price_change_pct": pct(self.price_change_pct),
            "trend_per_min": pct(self.trend_per_min),
            "at_ms": self.at_ms,
            "suppressed": self.suppressed,
            "reason": self.reason,
        }


def quantize_level(diff: float, threshold: float, step: float) -> float:
    """Snap a signed divergence to the alert lattice (pure)."""
    magnitude = abs(diff)
    if not math.isfinite(magnitude) or magnitude < threshold:
        return 0.0
    steps_above = math.floor((magnitude - threshold) / step) + 1  # 5 -> 1, 6.25 -> 2 ...
    level = threshold + (steps_above - 1) * step
    return round(math.copysign(level, diff), 2)


def level_rank(level: float, threshold: float, step: float, cap: int = 5) -> int:
    """1-based lattice index of a non-zero level, capped for display."""
    if level == 0:
        return 0
    return min(cap, math.floor((abs(level) - threshold) / step + 1e-9) + 1)


def recent_slope(state: PairState) -> float:
    """Divergence slope in % per second from the last ~3 trend points."""
    n = len(state.trend)
    if n < 2:
        return 0.0
    a = state.trend[max(0, n - 3)]
    b = state.trend[n - 1]
    dt = max(1, b.ts - a.ts)
    return (b.diff - a.diff) / dt


class AlertStateMachine:
    def __init__(self, settings: Settings, clock=time.time):
        self.threshold = settings.alert_threshold_pct
        self.step = settings.alert_step_pct
        self.cooldown_ms = settings.alert_cooldown_sec * 1000
        self.crown_window_ms = settings.digest_crown_window_sec * 1000
        self.enabled = settings.step_alerts_enabled
        self._clock = clock

    def quantize(self, diff: float) -> float:
        return quantize_level(diff, self.threshold, self.step)

    def _count_hit(self, state: PairState, now_ms: int) -> None:
        a = state.alert
        if not a.hits_window_start_ms or (now_ms - a.hits_window_start_ms) > self.crown_window_ms:
            a.hits_window_start_ms = now_ms
            a.hits = 0
        a.hits += 1

    def recent_hits(self, state: PairState, now_ms: int) -> int:
        a = state.alert
        if not a.hits_window_start_ms or (now_ms - a.hits_window_start_ms) >= self.crown_window_ms:
            return 0
        return a.hits

    def evaluate(self, state: PairState, now_ms: Optional[int] = None) -> Optional[AlertEvent]:
        """Decide whether the latest metrics for `state` produce an alert.

        Returns an AlertEvent for every level transition that would announce
        something; `suppressed` is set when the cooldown (or the global
        switch) holds the notification back. Returns None when the level did
        not move or nothing needs announcing.
        """
        diff = state.divergence_pct
        if diff is None or state.last is None:
            return None
        if now_ms is None:
            now_ms = int(self._clock() * 1000)

        diff_now = pct(diff)
        new_level = self.quantize(diff_now)
        a = state.alert
        prev_level = a.level
        if new_level == prev_level:
            return None

        if new_level != 0:
            self._count_hit(state, now_ms)
        a.level = new_level

        announced = a.announced_level
        if new_level == announced:
            # Back to the last announced level: nothing new to say
            return None
        if new_level == 0:
            kind = AlertKind.DISARM
        else:
            kind = AlertKind.STEP

        event = AlertEvent(
            pair=state.pair,
            kind=kind,
            level=new_level,
            previous_level=announced,
            delta=round(new_level - announced, 2),
            divergence_pct=diff,
            velocity_pct=state.velocity_pct or 0.0,
            price_change_pct=state.price_change_pct or 0.0,
            trend_per_min=recent_slope(state) * 60,
            at_ms=now_ms,
        )

        if not self.enabled:
            event.suppressed, event.reason = True, "disabled"
        elif a.last_fired_ms and now_ms - a.last_fired_ms < self.cooldown_ms:
            event.suppressed, event.reason = True, "cooldown"
        if event.suppressed:
            logger.debug(
                "alerts.suppressed",
                extra={"event": "alert_suppressed", "pair": state.pair, "level_pct": new_level},
            )
            return event

        a.announced_level = new_level
        a.last_fired_ms = now_ms
        return event


__all__ = [
    "AlertKind",
    "AlertEvent",
    "AlertStateMachine",
    "quantize_level",
    "level_rank",
    "recent_slope",
]
