"""
monitor.py: wires the engine pieces together.

    feed tick -> make_observation -> MetricsEngine.update
              -> AlertStateMachine.evaluate -> SlackNotifier
    digest timer   -> DigestAggregator.run -> SlackNotifier
    snapshot timer -> build_snapshot -> socket push / HTTP

A single lock serialises mutations so the timer threads always read a
consistent PairState.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Iterable, Optional

from .alert_state import AlertEvent, AlertStateMachine
from .alert_text import build_alert_text
from .config import Settings
from .digest import DigestAggregator, DigestResult
from .metrics_engine import MetricsEngine
from .notifier import SlackNotifier
from .sample_store import make_observation
from .snapshot import build_snapshot

logger = logging.getLogger(__name__)

RECENT_ALERTS_MAX = 200


class Monitor:
    def __init__(
        self,
        settings: Settings,
        notifier: Optional[SlackNotifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.engine = MetricsEngine(settings)
        self.alerts = AlertStateMachine(settings, clock=clock)
        self.digest = DigestAggregator(settings, self.alerts, clock=clock)
        self.notifier = notifier or SlackNotifier.from_settings(settings)
        self._clock = clock
        self._lock = threading.RLock()
        self.pairs: list[str] = []
        self.discovered_total = 0
        self.recent_alerts: deque = deque(maxlen=RECENT_ALERTS_MAX)
        self.stats: dict[str, int] = {
            "observations_total": 0,
            "observations_rejected_total": 0,
            "signal_skips_total": 0,
            "alerts_sent_total": 0,
            "alerts_suppressed_total": 0,
            "digests_sent_total": 0,
            "digests_suppressed_total": 0,
        }

    @property
    def store(self):
        return self.engine.store

    def set_pairs(self, pairs: Iterable[str], discovered_total: Optional[int] = None) -> None:
        with self._lock:
            self.pairs = list(pairs)
            self.discovered_total = discovered_total if discovered_total is not None else len(self.pairs)
            for p in self.pairs:
                self.store.ensure(p)

    # --- per-observation path ---------------------------------------------

    def ingest(self, pair: str, ts: Any, volume: Any, price: Any, baseline: Any = None) -> Optional[AlertEvent]:
        obs = make_observation(ts, volume, price, baseline)
        if not pair or obs is None:
            with self._lock:
                self.stats["observations_rejected_total"] += 1
            logger.debug("monitor.rejected", extra={"event": "observation_rejected", "pair": pair})
            return None

        with self._lock:
            self.stats["observations_total"] += 1
            state = self.engine.update(pair, obs)
            if state is None:
                self.stats["signal_skips_total"] += 1
                return None
            event = self.alerts.evaluate(state, now_ms=obs.ts * 1000)
            if event is None:
                return None
            self.recent_alerts.append(event)
            if event.suppressed:
                self.stats["alerts_suppressed_total"] += 1
                return event
            self.stats["alerts_sent_total"] += 1

        # Committed before delivery; delivery outcome never feeds back
        text, blocks = build_alert_text(event, self.settings.alert_threshold_pct, self.settings.alert_step_pct)
        logger.info("alerts.fired %s", text.splitlines()[0],
                    extra={"event": "alert_fired", "pair": pair, "level_pct": event.level})
        self.notifier.send(text, blocks)
        return event

    # --- timer-driven paths -------------------------------------------------

    def run_digest(self, now: Optional[float] = None) -> DigestResult:
        with self._lock:
            result = self.digest.run(self.store, now_sec=now if now is not None else self._clock())
            key = "digests_sent_total" if result.emitted else "digests_suppressed_total"
            self.stats[key] += 1
        if result.emitted:
            self.notifier.send(result.text, result.blocks)
        return result

    def snapshot(self, now: Optional[float] = None) -> dict:
        with self._lock:
            return build_snapshot(
                self.store,
                self.settings,
                subscribed=len(self.pairs) or None,
                now=now if now is not None else self._clock(),
            )

    def recent_alert_dicts(self, limit: int = 50) -> list[dict]:
        with self._lock:
            items = list(self.recent_alerts)[-limit:]
        return [e.as_dict() for e in reversed(items)]

    def stats_snapshot(self) -> dict[str, int]:
        with self._lock:
            out = dict(self.stats)
            out["pairs_tracked"] = len(self.store)
            out["pairs_warming"] = sum(1 for s in self.store if s.last is not None and not s.has_metrics)
        out.update({f"notify_{k}_total": v for k, v in self.notifier.stats.items()})
        return out


class PeriodicTask:
    """Daemon thread calling `fn` every `interval` seconds until stopped."""

    def __init__(self, name: str, interval: float, fn: Callable[[], Any]):
        self.name = name
        self.interval = interval
        self.fn = fn
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.fn()
            except Exception:
                logger.exception("periodic.%s_failed", self.name)

    def start(self) -> "PeriodicTask":
        if self._thread and self._thread.is_alive():
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return self

    def stop(self):
        self._stop.set()


__all__ = ["Monitor", "PeriodicTask"]
