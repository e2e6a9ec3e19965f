"""
digest.py: periodic sustained-divergence summary across all pairs.

Each cycle averages every pair's trend points inside the digest window, keeps
the significant ones, splits them into winners and losers, updates digest
streaks and decides whether the result differs enough from the previous
digest to be worth posting.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .alert_state import AlertStateMachine, recent_slope
from .alert_text import build_digest_text
from .config import Settings
from .sample_store import PairState

logger = logging.getLogger(__name__)


@dataclass
class DigestRow:
    pair: str
    avg_divergence: float
    velocity_pct: float
    price_change_pct: float
    trend_per_min: float
    crowned: bool = False


@dataclass
class DigestResult:
    winners: list[DigestRow] = field(default_factory=list)
    losers: list[DigestRow] = field(default_factory=list)
    emitted: bool = False
    reason: str = ""
    text: str = ""
    blocks: Optional[list] = None

    @property
    def members(self) -> frozenset[str]:
        return frozenset(r.pair for r in self.winners + self.losers)

    @property
    def leader(self) -> Optional[DigestRow]:
        if self.winners:
            return self.winners[0]
        if self.losers:
            return self.losers[0]
        return None


def avg_divergence_over_window(state: PairState, now_sec: float, window_sec: float) -> Optional[float]:
    """Mean trend divergence with ts >= now - window; None when no samples."""
    t0 = now_sec - window_sec
    total, count = 0.0, 0
    for point in reversed(state.trend):
        if point.ts < t0:
            break
        total += point.diff
        count += 1
    if not count:
        return None
    return total / count


class DigestAggregator:
    def __init__(self, settings: Settings, alerts: AlertStateMachine, clock=time.time):
        self.settings = settings
        self.alerts = alerts
        self._clock = clock
        self._last_members: frozenset[str] = frozenset()
        self._last_leader: Optional[tuple[str, float]] = None

    def _rows(self, states: Iterable[PairState], now_sec: float) -> list[DigestRow]:
        s = self.settings
        now_ms = int(now_sec * 1000)
        rows = []
        for state in states:
            if state.last is None:
                continue
            avg = avg_divergence_over_window(state, now_sec, s.digest_window_sec)
            if avg is None or not math.isfinite(avg):
                continue
            crowned_by_hits = self.alerts.recent_hits(state, now_ms) >= 2
            rows.append(DigestRow(
                pair=state.pair,
                avg_divergence=avg,
                velocity_pct=state.velocity_pct or 0.0,
                price_change_pct=state.price_change_pct or 0.0,
                trend_per_min=recent_slope(state) * 60,
                # streak as of the previous cycle
                crowned=crowned_by_hits or state.digest_streak >= s.digest_streak_crown_min,
            ))
        return rows

    def _should_emit(self, result: DigestResult) -> tuple[bool, str]:
        members = result.members
        if members != self._last_members:
            return True, "composition_changed"
        leader = result.leader
        if leader is None:
            return False, "empty"
        if self._last_leader is None:
            return True, "composition_changed"
        moved = abs(leader.avg_divergence - self._last_leader[1])
        if moved >= self.settings.digest_repost_delta_pct:
            return True, "leader_moved"
        return False, "unchanged"

    def run(self, states: Iterable[PairState], now_sec: Optional[float] = None) -> DigestResult:
        s = self.settings
        if now_sec is None:
            now_sec = self._clock()
        states = list(states)

        significant = [r for r in self._rows(states, now_sec) if abs(r.avg_divergence) >= s.digest_min_abs_pct]
        winners = sorted((r for r in significant if r.avg_divergence >= 0), key=lambda r: -r.avg_divergence)
        losers = []
        if s.digest_include_losers:
            losers = sorted((r for r in significant if r.avg_divergence < 0), key=lambda r: r.avg_divergence)
        result = DigestResult(winners=winners[: s.digest_top_n], losers=losers[: s.digest_top_n])

        included = result.members
        for state in states:
            state.digest_streak = state.digest_streak + 1 if state.pair in included else 0

        if not included:
            self._last_members = frozenset()
            self._last_leader = None
            result.reason = "empty"
            return result

        emit, reason = self._should_emit(result)
        result.reason = reason
        self._last_members = included
        if emit:
            leader = result.leader
            self._last_leader = (leader.pair, leader.avg_divergence)
            result.text, result.blocks = build_digest_text(
                result.winners, result.losers, s.digest_window_sec, s.digest_top_n
            )
            result.emitted = True
        else:
            logger.info("digest.suppressed", extra={"event": "digest_suppressed", "count": len(included)})
        return result


__all__ = ["DigestAggregator", "DigestResult", "DigestRow", "avg_divergence_over_window"]
