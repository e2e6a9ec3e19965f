import pytest

from volpulse.alert_state import AlertStateMachine
from volpulse.digest import DigestAggregator, avg_divergence_over_window
from volpulse.sample_store import TrendPoint

NOW = 100_000


def _aggregator(settings):
    return DigestAggregator(settings, AlertStateMachine(settings))


def _set_trend(state, *diffs, start=NOW - 200, step=50):
    state.trend.clear()
    for i, diff in enumerate(diffs):
        state.trend.append(TrendPoint(start + i * step, diff))


def test_avg_divergence_only_counts_points_inside_window(make_state):
    state = make_state(trend=[(NOW - 600, 50.0), (NOW - 200, 4.0), (NOW - 100, 6.0)])
    assert avg_divergence_over_window(state, NOW, 300) == pytest.approx(5.0)
    assert avg_divergence_over_window(make_state(trend=[(NOW - 900, 9.0)]), NOW, 300) is None


def test_digest_partitions_filters_and_updates_streaks(make_settings, make_state):
    agg = _aggregator(make_settings(digest_min_abs_pct=3.0, digest_window_sec=300))
    winner = make_state('XBT/USD', trend=[(NOW - 100, 6.0), (NOW - 50, 8.0)])
    small = make_state('ETH/USD', trend=[(NOW - 100, 1.0)])
    loser_a = make_state('SOL/USD', trend=[(NOW - 100, -4.0)])
    loser_b = make_state('SUI/USD', trend=[(NOW - 100, -9.0)])
    stale = make_state('ADA/USD', trend=[(NOW - 1_000, 20.0)])
    stale.digest_streak = 4

    result = agg.run([winner, small, loser_a, loser_b, stale], now_sec=NOW)

    assert result.emitted
    assert result.reason == 'composition_changed'
    assert [r.pair for r in result.winners] == ['XBT/USD']
    assert result.winners[0].avg_divergence == pytest.approx(7.0)
    assert [r.pair for r in result.losers] == ['SUI/USD', 'SOL/USD']
    assert winner.digest_streak == 1
    assert loser_b.digest_streak == 1
    assert small.digest_streak == 0
    assert stale.digest_streak == 0
    assert 'XBT/USD' in result.text
    assert '*Losers*' in result.text
    assert result.blocks[0]['type'] == 'header'


def test_digest_caps_each_side_at_top_n(make_settings, make_state):
    agg = _aggregator(make_settings(digest_top_n=2))
    states = [make_state(f'P{i}/USD', trend=[(NOW - 10, 10.0 + i)]) for i in range(5)]
    result = agg.run(states, now_sec=NOW)
    assert [r.pair for r in result.winners] == ['P4/USD', 'P3/USD']
    assert sum(s.digest_streak for s in states) == 2


def test_digest_suppresses_unchanged_composition(make_settings, make_state):
    agg = _aggregator(make_settings(digest_repost_delta_pct=1.0))
    xbt = make_state('XBT/USD')
    _set_trend(xbt, 6.0, 6.0)
    assert agg.run([xbt], now_sec=NOW).emitted

    _set_trend(xbt, 6.2, 6.6)
    second = agg.run([xbt], now_sec=NOW)
    assert not second.emitted
    assert second.reason == 'unchanged'
    assert second.text == ''

    _set_trend(xbt, 7.5, 7.5)
    third = agg.run([xbt], now_sec=NOW)
    assert third.emitted
    assert third.reason == 'leader_moved'


def test_digest_reposts_when_membership_changes(make_settings, make_state):
    agg = _aggregator(make_settings())
    xbt = make_state('XBT/USD', trend=[(NOW - 10, 6.0)])
    eth = make_state('ETH/USD', trend=[(NOW - 10, 1.0)])
    assert agg.run([xbt, eth], now_sec=NOW).emitted

    eth.trend.append(TrendPoint(NOW - 5, 9.0))
    eth.trend.popleft()
    result = agg.run([xbt, eth], now_sec=NOW)
    assert result.emitted
    assert result.reason == 'composition_changed'


def test_digest_with_nothing_significant_resets_and_stays_quiet(make_settings, make_state):
    agg = _aggregator(make_settings())
    xbt = make_state('XBT/USD', trend=[(NOW - 10, 6.0)])
    assert agg.run([xbt], now_sec=NOW).emitted
    _set_trend(xbt, 0.5)
    quiet = agg.run([xbt], now_sec=NOW)
    assert not quiet.emitted
    assert xbt.digest_streak == 0
    _set_trend(xbt, 6.0)
    assert agg.run([xbt], now_sec=NOW).emitted


def test_crown_after_consecutive_cycles(make_settings, make_state):
    agg = _aggregator(make_settings(digest_streak_crown_min=2))
    xbt = make_state('XBT/USD', trend=[(NOW - 10, 6.0)])
    first = agg.run([xbt], now_sec=NOW)
    second = agg.run([xbt], now_sec=NOW)
    third = agg.run([xbt], now_sec=NOW)
    assert not first.winners[0].crowned
    assert not second.winners[0].crowned
    assert third.winners[0].crowned
    assert xbt.digest_streak == 3


def test_crown_from_recent_step_hits(make_settings, make_state):
    settings = make_settings(alert_cooldown_sec=0)
    alerts = AlertStateMachine(settings)
    agg = DigestAggregator(settings, alerts)
    xbt = make_state('XBT/USD', velocity=5.0, trend=[(NOW - 10, 6.0)])
    alerts.evaluate(xbt, now_ms=(NOW - 120) * 1000)
    xbt.velocity_pct = 6.5
    alerts.evaluate(xbt, now_ms=(NOW - 60) * 1000)

    result = agg.run([xbt], now_sec=NOW)
    assert result.winners[0].crowned
    assert '👑' in result.text


def test_losers_can_be_disabled(make_settings, make_state):
    agg = _aggregator(make_settings(digest_include_losers=False))
    sol = make_state('SOL/USD', trend=[(NOW - 10, -12.0)])
    result = agg.run([sol], now_sec=NOW)
    assert result.losers == []
    assert not result.emitted
    assert sol.digest_streak == 0
