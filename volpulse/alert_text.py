"""
Alert text builder for step alerts, disarm notices and digests.

This centralizes message formatting so emitters don't build strings inline.
Every builder returns (text, blocks) where blocks is a Slack block list or None.
"""

from __future__ import annotations

from typing import Any, Sequence, Tuple

from .alert_state import AlertEvent, AlertKind, level_rank

WINNER_MARKS = ['👑🚀🔥', '🚀🔥', '🚀', '✨', '✨', '⭐', '⭐', '•', '•', '•']
LOSER_MARKS = ['🧊❄️', '🧊', '🧊', '🥶', '🥶', '🧊', '🧊', '🧊', '🧊', '🧊']


def _safe_float(value: Any) -> float | None:
    try:
        if value is None or value == "":
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _fmt_pct(value: Any, decimals: int = 2, signed: bool = False) -> str:
    num = _safe_float(value) or 0.0
    if signed:
        return f"{num:+.{decimals}f}%"
    return f"{num:.{decimals}f}%"


def _section(text: str) -> dict:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def build_step_text(event: AlertEvent, threshold: float, step: float) -> Tuple[str, list | None]:
    """Step alert: direction, step size, new absolute level, raw signals, trend."""
    rank = level_rank(event.level, threshold, step)
    flames = ('🔥' if event.level > 0 else '🧊') * max(1, rank)
    arrow = '⬆️' if event.delta > 0 else '⬇️'
    direction = event.direction.upper()
    text = (
        f"{flames} {event.pair}: {arrow} {direction} {abs(event.delta):.2f}% "
        f"to *{abs(event.level):.2f}% diff*\n"
        f"• Vol% {_fmt_pct(event.velocity_pct)} • Price% {_fmt_pct(event.price_change_pct)} "
        f"• Diff {_fmt_pct(event.divergence_pct)} • ~{_fmt_pct(event.trend_per_min)}/min"
    )
    return text, None


def build_disarm_text(event: AlertEvent, threshold: float) -> Tuple[str, list | None]:
    emoji = '🟢🔕' if event.previous_level > 0 else '🔴🔕'
    text = (
        f"{emoji} {event.pair}: diff back *below {threshold:.2f}%* (now {_fmt_pct(event.divergence_pct)}).\n"
        f"• Vol% {_fmt_pct(event.velocity_pct)} • Price% {_fmt_pct(event.price_change_pct)}"
    )
    return text, None


def build_alert_text(event: AlertEvent, threshold: float, step: float) -> Tuple[str, list | None]:
    if event.kind is AlertKind.DISARM:
        return build_disarm_text(event, threshold)
    return build_step_text(event, threshold, step)


def build_digest_line(i: int, row, is_loser: bool = False) -> str:
    marks = LOSER_MARKS if is_loser else WINNER_MARKS
    mark = marks[i] if i < len(marks) else ('🧊' if is_loser else '•')
    crown = ' 👑' if row.crowned else ''
    arrow = '↗︎' if row.trend_per_min >= 0 else '↘︎'
    return (
        f"{mark}{crown} {i + 1}) {row.pair} — avgΔ={_fmt_pct(row.avg_divergence)} "
        f"(vol={_fmt_pct(row.velocity_pct)}, price={_fmt_pct(row.price_change_pct)}, "
        f"trend ~{_fmt_pct(row.trend_per_min)}/min {arrow})"
    )


def build_digest_text(
    winners: Sequence,
    losers: Sequence,
    window_sec: int,
    top_n: int,
) -> Tuple[str, list | None]:
    title = (
        f"🧭 Kraken Volume • {round(window_sec / 60)}m digest • Top {top_n} winners & losers "
        f"(sustained Δ = vol% - price%)"
    )
    lines: list[str] = []
    blocks: list[dict] = [{"type": "header", "text": {"type": "plain_text", "text": title[:150]}}]
    if winners:
        winner_lines = [build_digest_line(i, row) for i, row in enumerate(winners)]
        lines.append("*Winners*")
        lines.extend(winner_lines)
        blocks.append(_section("*Winners*\n" + "\n".join(winner_lines)))
    if losers:
        loser_lines = [build_digest_line(i, row, is_loser=True) for i, row in enumerate(losers)]
        lines.append("\n*Losers*")
        lines.extend(loser_lines)
        blocks.append(_section("*Losers*\n" + "\n".join(loser_lines)))
    return f"{title}\n" + "\n".join(lines), blocks
