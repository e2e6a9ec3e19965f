"""
Shared pytest fixtures for the divergence monitor tests.
"""

import pytest

from volpulse.config import Settings
from volpulse.sample_store import Observation, PairState, TrendPoint


class RecordingNotifier:
    """Stands in for SlackNotifier; keeps every payload in memory."""

    def __init__(self):
        self.sent = []
        self.stats = {'sent': 0, 'failed': 0, 'skipped': 0}

    def send(self, text, blocks=None):
        self.sent.append((text, blocks))
        self.stats['sent'] += 1


@pytest.fixture
def make_settings():
    def _make(**overrides):
        return Settings(**overrides)
    return _make


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_state():
    """PairState with metrics already populated."""
    def _make(pair='XBT/USD', velocity=0.0, price_change=0.0, ts=1_000, trend=()):
        state = PairState(pair=pair)
        state.last = Observation(ts=ts, price=100.0, baseline=100.0, volume=1000.0)
        state.velocity_pct = velocity
        state.price_change_pct = price_change
        for point_ts, diff in trend:
            state.trend.append(TrendPoint(point_ts, diff))
        return state
    return _make
