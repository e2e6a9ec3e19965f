"""Pydantic response models for the HTTP surface.

Used to validate payloads in tests and to document the snapshot contract
consumed by the dashboard.
"""
from __future__ import annotations
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = Field(pattern='^ok$')
    uptime_seconds: float
    pairs_tracked: int
    feed_connected: bool


class SnapshotPair(BaseModel):
    ts: int
    price: float
    baseline: Optional[float] = None
    volume: float
    warming_up: bool
    velocity_pct: Optional[float] = None
    price_change_pct: Optional[float] = None
    divergence_pct: Optional[float] = None
    score: Optional[float] = None
    alert_level: float
    digest_streak: int


class SnapshotMeta(BaseModel):
    rank_mode: str
    strategy: str
    quote: str
    pair_count: int
    subscribed: int
    rate_window_sec: int
    lookback_hours: float
    short_horizon_sec: int


class SnapshotResponse(BaseModel):
    ts: int
    meta: SnapshotMeta
    pairs: Dict[str, SnapshotPair]
    ranked: List[str]
    top: List[str]


class PairsResponse(BaseModel):
    mode: str
    quote: str
    total_discovered: int
    subscribed: int
    pairs: List[str]


class AlertEventModel(BaseModel):
    pair: str
    kind: str
    direction: Optional[str] = None
    level: float
    previous_level: float
    delta: float
    divergence_pct: float
    velocity_pct: float
    price_change_pct: float
    trend_per_min: float
    at_ms: int
    suppressed: bool
    reason: str


class AlertsResponse(BaseModel):
    alerts: List[AlertEventModel]
