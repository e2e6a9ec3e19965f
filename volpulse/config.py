"""Runtime configuration for the volume/price divergence monitor.

All knobs come from the environment (a `.env` file is loaded at boot by
`app.main`). Values are parsed once into an immutable `Settings` object that
is passed explicitly to every collaborator.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Mapping, Optional

RANK_MODES = {"ratio", "vol"}
STRATEGIES = {"lookback", "velocity"}

DEFAULT_PAIRS = "SOL/USD,XBT/USD,ETH/USD,SUI/USD"
FALLBACK_PAIRS = ("XBT/USD", "ETH/USD", "SOL/USD", "SUI/USD")


class ConfigError(ValueError):
    """Raised when an environment value cannot be used."""


def _bool(raw: str) -> bool:
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _num(env: Mapping[str, str], key: str, default, cast=float):
    raw = env.get(key)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be numeric, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    # Ranking / metrics
    rank_mode: str = "ratio"
    strategy: str = "lookback"
    rate_window_sec: int = 60
    lookback_hours: float = 24.0
    daybuf_res_sec: int = 60

    # Step alerts
    alert_threshold_pct: float = 5.0
    alert_step_pct: float = 1.25
    alert_cooldown_sec: int = 300
    step_alerts_enabled: bool = True

    # Digest
    digest_every_sec: int = 300
    digest_top_n: int = 10
    digest_min_abs_pct: float = 3.0
    digest_include_losers: bool = True
    digest_window_sec: int = 300
    digest_streak_crown_min: int = 2
    digest_crown_window_sec: int = 3600
    digest_repost_delta_pct: float = 1.0

    # Surfaces
    snapshot_push_sec: float = 2.0
    slack_webhook_url: str = ""
    host: str = "0.0.0.0"
    port: int = 3000

    # Feed
    pairs_raw: str = DEFAULT_PAIRS
    quote: str = "USD"
    max_subscribe_pairs: int = 300
    sub_batch_size: int = 25
    sub_batch_delay_ms: int = 600
    exclude_regex: str = ""

    _exclude: Optional[re.Pattern] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self.rank_mode not in RANK_MODES:
            raise ConfigError(f"RANK_MODE must be one of {sorted(RANK_MODES)}, got {self.rank_mode!r}")
        if self.strategy not in STRATEGIES:
            raise ConfigError(f"METRICS_STRATEGY must be one of {sorted(STRATEGIES)}, got {self.strategy!r}")
        if self.alert_step_pct <= 0:
            raise ConfigError("ALERT_LEVEL_STEP_PCT must be > 0")
        if self.alert_threshold_pct <= 0:
            raise ConfigError("ALERT_DIFF_THRESHOLD_PCT must be > 0")
        if self.rate_window_sec <= 0 or self.daybuf_res_sec <= 0:
            raise ConfigError("RATE_WINDOW_SEC and DAYBUF_RES_SEC must be > 0")
        if self.lookback_hours <= 0:
            raise ConfigError("LOOKBACK_HOURS must be > 0")
        if self.digest_top_n <= 0:
            raise ConfigError("DIGEST_TOP_N must be > 0")
        if self.snapshot_push_sec <= 0:
            raise ConfigError("SNAPSHOT_PUSH_SEC must be > 0")
        for key, value in (
            ("ALERT_MIN_INTERVAL_SEC", self.alert_cooldown_sec),
            ("DIGEST_WINDOW_SEC", self.digest_window_sec),
            ("DIGEST_CROWN_WINDOW_SEC", self.digest_crown_window_sec),
        ):
            if value < 0:
                raise ConfigError(f"{key} must be >= 0")
        if self.exclude_regex:
            try:
                object.__setattr__(self, "_exclude", re.compile(self.exclude_regex))
            except re.error as exc:
                raise ConfigError(f"KRAKEN_EXCLUDE_REGEX is invalid: {exc}") from None

    # --- derived values -------------------------------------------------

    @property
    def short_horizon_sec(self) -> int:
        """Retention of the short observation and trend buffers."""
        return max(self.rate_window_sec * 10, 600)

    @property
    def daybuf_keep_hours(self) -> float:
        return max(self.lookback_hours + 2, 26)

    @property
    def digest_interval_sec(self) -> int:
        return max(60, self.digest_every_sec)

    @property
    def auto_discover(self) -> bool:
        return self.pairs_raw.strip().upper() == "ALL"

    @property
    def exclude_pattern(self) -> Optional[re.Pattern]:
        return self._exclude

    def env_pairs(self) -> list[str]:
        return [p.strip() for p in self.pairs_raw.split(",") if p.strip()]

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out.pop("_exclude", None)
        if out.get("slack_webhook_url"):
            out["slack_webhook_url"] = "***"
        return out

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        rank_mode = env.get("RANK_MODE", "ratio").strip().lower()
        if rank_mode == "raw":
            rank_mode = "vol"
        return cls(
            rank_mode=rank_mode,
            strategy=env.get("METRICS_STRATEGY", "lookback").strip().lower(),
            rate_window_sec=_num(env, "RATE_WINDOW_SEC", 60, int),
            lookback_hours=_num(env, "LOOKBACK_HOURS", 24.0),
            daybuf_res_sec=_num(env, "DAYBUF_RES_SEC", 60, int),
            alert_threshold_pct=_num(env, "ALERT_DIFF_THRESHOLD_PCT", 5.0),
            alert_step_pct=_num(env, "ALERT_LEVEL_STEP_PCT", 1.25),
            alert_cooldown_sec=_num(env, "ALERT_MIN_INTERVAL_SEC", 300, int),
            step_alerts_enabled=_bool(env.get("STEP_ALERTS_ENABLED", "true")),
            digest_every_sec=_num(env, "DIGEST_EVERY_SEC", 300, int),
            digest_top_n=_num(env, "DIGEST_TOP_N", 10, int),
            digest_min_abs_pct=_num(env, "DIGEST_MIN_ABS_DELTA_PCT", 3.0),
            digest_include_losers=_bool(env.get("DIGEST_INCLUDE_LOSERS", "true")),
            digest_window_sec=_num(env, "DIGEST_WINDOW_SEC", 300, int),
            digest_streak_crown_min=_num(env, "DIGEST_STREAK_CROWN_MIN", 2, int),
            digest_crown_window_sec=_num(env, "DIGEST_CROWN_WINDOW_SEC", 3600, int),
            digest_repost_delta_pct=_num(env, "DIGEST_REPOST_DELTA_PCT", 1.0),
            snapshot_push_sec=_num(env, "SNAPSHOT_PUSH_SEC", 2.0),
            slack_webhook_url=env.get("SLACK_WEBHOOK_URL", "").strip(),
            host=env.get("HOST", "0.0.0.0"),
            port=_num(env, "PORT", 3000, int),
            pairs_raw=env.get("KRAKEN_WS_PAIRS", DEFAULT_PAIRS),
            quote=env.get("KRAKEN_QUOTE", "USD").strip().upper(),
            max_subscribe_pairs=_num(env, "MAX_SUBSCRIBE_PAIRS", 300, int),
            sub_batch_size=max(1, _num(env, "SUB_BATCH_SIZE", 25, int)),
            sub_batch_delay_ms=_num(env, "SUB_BATCH_DELAY_MS", 600, int),
            exclude_regex=env.get("KRAKEN_EXCLUDE_REGEX", ""),
        )


__all__ = ["Settings", "ConfigError", "FALLBACK_PAIRS"]
