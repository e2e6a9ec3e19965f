"""Prometheus text exposition for monitor counters.

Text exposition without prometheus_client. Keep names stable & snake_case.
"""
from __future__ import annotations
from typing import Any, Dict

# counter-style keys end in _total, everything else is a gauge
_HELP = {
    'observations_total': 'Observations accepted from the feed',
    'observations_rejected_total': 'Malformed observations discarded at ingestion',
    'signal_skips_total': 'Observations that produced no signal (warm-up, duplicate, out of order)',
    'alerts_sent_total': 'Step/disarm alerts handed to the notifier',
    'alerts_suppressed_total': 'Alert transitions held back by cooldown or the global switch',
    'digests_sent_total': 'Digests handed to the notifier',
    'digests_suppressed_total': 'Digest cycles with nothing new to post',
    'pairs_tracked': 'Pairs with allocated state',
    'pairs_warming': 'Pairs with observations but no reference sample yet',
}


def emit_prometheus(lines: list[str], name: str, value: Any, mtype: str, help_text: str):
    lines.append(f'# HELP {name} {help_text}')
    lines.append(f'# TYPE {name} {mtype}')
    if value is None:
        value = 'NaN'
    lines.append(f'{name} {value}')


def render_monitor_metrics(stats: Dict[str, Any], prefix: str = 'volpulse_') -> str:
    lines: list[str] = []
    for key in sorted(stats):
        mtype = 'counter' if key.endswith('_total') else 'gauge'
        help_text = _HELP.get(key, key.replace('_', ' '))
        emit_prometheus(lines, f'{prefix}{key}', stats[key], mtype, help_text)
    return '\n'.join(lines) + '\n'
