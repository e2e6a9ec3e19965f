import threading

from volpulse.alert_state import AlertKind
from volpulse.monitor import Monitor, PeriodicTask


def _monitor(make_settings, notifier, **overrides):
    settings = make_settings(strategy='velocity', rate_window_sec=3600, **overrides)
    return Monitor(settings, notifier=notifier, clock=lambda: 5_000.0)


def test_end_to_end_no_alert_when_volume_and_price_agree(make_settings, notifier):
    mon = _monitor(make_settings, notifier)
    assert mon.ingest('XBT/USD', 1_000, 1000.0, 100.0, 100.0) is None
    assert mon.ingest('XBT/USD', 4_600, 1100.0, 110.0, 100.0) is None
    snap = mon.snapshot()
    assert snap['pairs']['XBT/USD']['velocity_pct'] == 10.0
    assert snap['pairs']['XBT/USD']['price_change_pct'] == 10.0
    assert snap['pairs']['XBT/USD']['divergence_pct'] == 0.0
    assert notifier.sent == []


def test_step_alert_is_delivered(make_settings, notifier):
    mon = _monitor(make_settings, notifier)
    mon.ingest('XBT/USD', 1_000, 1000.0, 100.0, 100.0)
    event = mon.ingest('XBT/USD', 4_600, 1100.0, 100.0, 100.0)

    assert event.kind is AlertKind.STEP
    assert event.level == 10.0
    assert mon.stats['alerts_sent_total'] == 1
    text, _ = notifier.sent[0]
    assert 'XBT/USD' in text
    assert 'UP' in text
    assert '10.00% diff' in text
    assert mon.recent_alert_dicts()[0]['pair'] == 'XBT/USD'


def test_cooldown_suppression_is_counted_not_sent(make_settings, notifier):
    mon = _monitor(make_settings, notifier, alert_cooldown_sec=300)
    mon.ingest('XBT/USD', 1_000, 1000.0, 100.0, 100.0)
    mon.ingest('XBT/USD', 4_600, 1100.0, 100.0, 100.0)   # +10% -> level 10
    event = mon.ingest('XBT/USD', 4_660, 1100.0, 95.0, 100.0)  # ~14.8% -> level 13.75
    assert event.suppressed
    assert len(notifier.sent) == 1
    assert mon.stats['alerts_suppressed_total'] == 1
    assert mon.store.get('XBT/USD').alert.level == 13.75


def test_malformed_observations_are_discarded(make_settings, notifier):
    mon = _monitor(make_settings, notifier)
    assert mon.ingest('XBT/USD', 'not-a-ts', 1.0, 1.0) is None
    assert mon.ingest('XBT/USD', 1_000, 1.0, -3.0) is None
    assert mon.ingest('', 1_000, 1.0, 1.0) is None
    assert mon.stats['observations_rejected_total'] == 3
    assert mon.stats['observations_total'] == 0
    assert 'XBT/USD' not in mon.store


def test_run_digest_sends_once_for_unchanged_leaders(make_settings, notifier):
    mon = _monitor(make_settings, notifier, alert_cooldown_sec=0, step_alerts_enabled=False)
    mon.ingest('XBT/USD', 1_000, 1000.0, 100.0, 100.0)
    mon.ingest('XBT/USD', 4_600, 1100.0, 100.0, 100.0)

    first = mon.run_digest(now=4_700)
    second = mon.run_digest(now=4_710)
    assert first.emitted
    assert not second.emitted
    assert len(notifier.sent) == 1
    assert 'digest' in notifier.sent[0][0]
    assert mon.stats['digests_sent_total'] == 1
    assert mon.stats['digests_suppressed_total'] == 1


def test_set_pairs_and_stats_snapshot(make_settings, notifier):
    mon = _monitor(make_settings, notifier)
    mon.set_pairs(['XBT/USD', 'ETH/USD'], discovered_total=10)
    mon.ingest('XBT/USD', 1_000, 1000.0, 100.0, 100.0)
    stats = mon.stats_snapshot()
    assert stats['pairs_tracked'] == 2
    assert stats['pairs_warming'] == 1
    assert stats['signal_skips_total'] == 1
    assert stats['notify_sent_total'] == 0
    snap = mon.snapshot()
    assert list(snap['pairs']) == ['XBT/USD']
    assert snap['meta']['subscribed'] == 2


def test_periodic_task_keeps_running_after_errors():
    calls = []
    done = threading.Event()

    def tick():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError('boom')
        done.set()

    task = PeriodicTask('test', 0.01, tick).start()
    try:
        assert done.wait(2.0)
    finally:
        task.stop()
    assert len(calls) >= 2
