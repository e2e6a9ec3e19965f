import math

import pytest

from volpulse.metrics_engine import MetricsEngine, nonneg, pct
from volpulse.sample_store import make_observation


def _obs(ts, volume, price, baseline=None):
    return make_observation(ts, volume, price, baseline)


def test_pct_and_nonneg_helpers():
    assert pct(1.23456) == 1.23
    assert pct(float('nan')) == 0.0
    assert pct(None) == 0.0
    assert nonneg(0) == 1e-9
    assert nonneg(None) == 1e-9
    assert nonneg(-5) == 1e-9
    assert nonneg(3.0) == 3.0


def test_velocity_strategy_end_to_end(make_settings):
    engine = MetricsEngine(make_settings(strategy='velocity', rate_window_sec=3600))
    # first observation has no reference: warm-up
    assert engine.update('XBT/USD', _obs(1_000, 1000.0, 100.0, 100.0)) is None
    state = engine.update('XBT/USD', _obs(4_600, 1100.0, 110.0, 100.0))
    assert state is not None
    assert state.velocity_pct == pytest.approx(10.0)
    assert state.price_change_pct == pytest.approx(10.0)
    assert pct(state.divergence_pct) == 0.0
    assert state.trend[-1].ts == 4_600


def test_velocity_strategy_scales_to_per_hour(make_settings):
    engine = MetricsEngine(make_settings(strategy='velocity', rate_window_sec=60))
    engine.update('ETH/USD', _obs(1_000, 1000.0, 100.0, 100.0))
    state = engine.update('ETH/USD', _obs(1_060, 1010.0, 100.0, 100.0))
    # 1% in 60s -> 60% per hour
    assert state.velocity_pct == pytest.approx(60.0)
    assert state.price_change_pct == pytest.approx(0.0)


def test_velocity_strategy_without_baseline_uses_reference_price(make_settings):
    engine = MetricsEngine(make_settings(strategy='velocity', rate_window_sec=60))
    engine.update('ETH/USD', _obs(1_000, 1000.0, 100.0))
    state = engine.update('ETH/USD', _obs(1_060, 1000.0, 102.0))
    assert state.price_change_pct == pytest.approx(2.0)


def test_velocity_strategy_zero_reference_volume_stays_finite(make_settings):
    engine = MetricsEngine(make_settings(strategy='velocity', rate_window_sec=60))
    engine.update('ETH/USD', _obs(1_000, 0.0, 100.0, 100.0))
    state = engine.update('ETH/USD', _obs(1_060, 5.0, 100.0, 100.0))
    assert math.isfinite(state.velocity_pct)
    assert math.isfinite(state.divergence_pct)


def test_lookback_strategy_warmup_until_history_exists(make_settings):
    engine = MetricsEngine(make_settings(strategy='lookback', lookback_hours=24))
    t0 = 1_700_000_000 - (1_700_000_000 % 60)
    # 10 minutes of history never produces a metrics update
    for i in range(10):
        assert engine.update('SOL/USD', _obs(t0 + i * 60, 1000.0, 100.0)) is None
    state = engine.store.get('SOL/USD')
    assert state.last.ts == t0 + 9 * 60
    assert state.velocity_pct is None
    assert state.divergence_pct is None
    assert not state.has_metrics

    for i in range(10, 24 * 60):
        assert engine.update('SOL/USD', _obs(t0 + i * 60, 1000.0, 100.0)) is None

    state = engine.update('SOL/USD', _obs(t0 + 24 * 3600, 1500.0, 105.0))
    assert state is not None
    assert state.velocity_pct == pytest.approx(50.0)
    assert state.price_change_pct == pytest.approx(5.0)
    assert state.divergence_pct == pytest.approx(45.0)


def test_divergence_is_difference_of_signals(make_settings):
    engine = MetricsEngine(make_settings(strategy='lookback', lookback_hours=1))
    engine.update('SUI/USD', _obs(0, 2000.0, 50.0))
    state = engine.update('SUI/USD', _obs(3_600, 2100.0, 49.0))
    assert state.divergence_pct == pytest.approx(state.velocity_pct - state.price_change_pct)
    assert pct(state.divergence_pct) == pytest.approx(pct(state.velocity_pct) - pct(state.price_change_pct), abs=0.011)


def test_duplicate_and_out_of_order_observations_are_ignored(make_settings):
    engine = MetricsEngine(make_settings(strategy='velocity', rate_window_sec=60))
    engine.update('XBT/USD', _obs(1_000, 1000.0, 100.0, 100.0))
    assert engine.update('XBT/USD', _obs(1_060, 1010.0, 100.0, 100.0)) is not None
    trend_len = len(engine.store.get('XBT/USD').trend)

    assert engine.update('XBT/USD', _obs(1_060, 1010.0, 100.0, 100.0)) is None
    assert engine.update('XBT/USD', _obs(1_030, 1020.0, 100.0, 100.0)) is None
    state = engine.store.get('XBT/USD')
    assert len(state.trend) == trend_len
    assert state.last.ts == 1_060


def test_pairs_do_not_share_state(make_settings):
    engine = MetricsEngine(make_settings(strategy='velocity', rate_window_sec=60))
    engine.update('XBT/USD', _obs(1_000, 1000.0, 100.0, 100.0))
    assert engine.update('ETH/USD', _obs(1_060, 1000.0, 100.0, 100.0)) is None
    assert engine.store.get('ETH/USD').velocity_pct is None


def test_velocity_strategy_zero_baseline_falls_back_to_reference_price(make_settings):
    engine = MetricsEngine(make_settings(strategy='velocity', rate_window_sec=60))
    engine.update('ETH/USD', _obs(1_000, 1000.0, 100.0, '0.00000'))
    state = engine.update('ETH/USD', _obs(1_060, 1000.0, 102.0, '0.00000'))
    assert state.price_change_pct == pytest.approx(2.0)
