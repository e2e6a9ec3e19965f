"""Kraken ticker feed: pair discovery (REST) and websocket ingestion.

The websocket client runs on its own asyncio loop in a background thread and
hands each parsed ticker to a sync callback (normally `Monitor.ingest`).
"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from typing import Any, Callable, Optional, Sequence

import aiohttp
import requests
from requests.exceptions import RequestException

from .config import FALLBACK_PAIRS, Settings

logger = logging.getLogger(__name__)

KRAKEN_WS_URL = "wss://ws.kraken.com/"
KRAKEN_ASSET_PAIRS_URL = "https://api.kraken.com/0/public/AssetPairs"
RECONNECT_DELAY_SEC = 3.0

TickerCallback = Callable[[str, int, float, float, Optional[float]], Any]


def _first_float(values: Any, index: int) -> Optional[float]:
    try:
        return float(values[index])
    except (TypeError, ValueError, IndexError, KeyError):
        return None


def parse_ticker_message(msg: Any) -> Optional[dict]:
    """Parse a v1 ticker frame `[chanId, {...}, "ticker", "BASE/QUOTE"]`.

    Returns {pair, price, volume, baseline} or None for anything else
    (event frames, other channels, malformed payloads).
    """
    if not isinstance(msg, list) or len(msg) < 2 or not isinstance(msg[1], dict):
        return None
    data = msg[1]
    maybe2 = msg[2] if len(msg) > 2 and isinstance(msg[2], str) else ""
    maybe3 = msg[3] if len(msg) > 3 and isinstance(msg[3], str) else ""
    pair = maybe2 if "/" in maybe2 else (maybe3 if "/" in maybe3 else None)
    if not pair:
        return None
    price = _first_float(data.get("c"), 0)
    volume = _first_float(data.get("v"), 1)  # rolling 24h base volume
    baseline = _first_float(data.get("p"), 1)  # rolling 24h VWAP
    if price is None or volume is None:
        return None
    return {"pair": pair, "price": price, "volume": volume, "baseline": baseline}


def discover_pairs(
    quote: str,
    exclude=None,
    max_pairs: int = 300,
    session: Optional[requests.Session] = None,
    timeout: float = 20.0,
) -> Optional[tuple[list[str], int]]:
    """All websocket pair names quoted in `quote`. Returns (pairs, total) or None."""
    http = session or requests
    try:
        resp = http.get(KRAKEN_ASSET_PAIRS_URL, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except (RequestException, ValueError) as e:
        logger.error("feed.discovery_failed", extra={"event": "discovery_failed", "error": str(e)})
        return None
    if not isinstance(data, dict) or data.get("error"):
        logger.error("feed.discovery_failed", extra={"event": "discovery_failed", "error": str(data.get("error") if isinstance(data, dict) else data)})
        return None

    names = []
    for entry in (data.get("result") or {}).values():
        wsname = entry.get("wsname") if isinstance(entry, dict) else None
        if wsname and wsname.endswith(f"/{quote}"):
            names.append(wsname)
    if exclude is not None:
        names = [n for n in names if not exclude.search(n)]
    unique = list(dict.fromkeys(names))
    return unique[:max_pairs], len(unique)


def resolve_pairs(settings: Settings, session: Optional[requests.Session] = None) -> tuple[list[str], int]:
    if not settings.auto_discover:
        pairs = settings.env_pairs()
        return pairs, len(pairs)
    found = discover_pairs(settings.quote, settings.exclude_pattern, settings.max_subscribe_pairs, session=session)
    if found and found[0]:
        return found
    logger.warning("Using fallback pairs: %s", ", ".join(FALLBACK_PAIRS))
    return list(FALLBACK_PAIRS), len(FALLBACK_PAIRS)


class KrakenFeed:
    def __init__(
        self,
        pairs: Sequence[str],
        on_ticker: TickerCallback,
        batch_size: int = 25,
        batch_delay_ms: int = 600,
        url: str = KRAKEN_WS_URL,
        clock: Callable[[], float] = time.time,
    ):
        self.pairs = list(pairs)
        self.on_ticker = on_ticker
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay_ms / 1000.0
        self.url = url
        self._clock = clock
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._stopping = False
        self.connected = False

    @classmethod
    def from_settings(cls, settings: Settings, pairs: Sequence[str], on_ticker: TickerCallback) -> "KrakenFeed":
        return cls(pairs, on_ticker, batch_size=settings.sub_batch_size, batch_delay_ms=settings.sub_batch_delay_ms)

    def batches(self) -> list[list[str]]:
        return [self.pairs[i:i + self.batch_size] for i in range(0, len(self.pairs), self.batch_size)]

    def handle_message(self, raw: str) -> bool:
        """Process one text frame. Returns True when a ticker was forwarded."""
        try:
            obj = json.loads(raw)
        except ValueError as e:
            logger.error("feed.parse_error", extra={"event": "feed_parse_error", "error": str(e)})
            return False
        if isinstance(obj, dict):
            if obj.get("event") == "subscriptionStatus" and obj.get("status") != "subscribed":
                logger.warning("feed.subscription_status %s", obj)
            return False
        tick = parse_ticker_message(obj)
        if tick is None:
            return False
        ts = int(self._clock())
        self.on_ticker(tick["pair"], ts, tick["volume"], tick["price"], tick["baseline"])
        return True

    async def _subscribe(self, ws) -> None:
        for chunk in self.batches():
            await ws.send_json({"event": "subscribe", "pair": chunk, "subscription": {"name": "ticker"}})
            await asyncio.sleep(self.batch_delay)

    async def _session_once(self) -> None:
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(self.url, heartbeat=30) as ws:
                self.connected = True
                logger.info("Kraken WS open. Subscribing: %d pairs", len(self.pairs))
                subscriber = asyncio.ensure_future(self._subscribe(ws))
                try:
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            try:
                                self.handle_message(msg.data)
                            except Exception:
                                logger.exception("feed.handler_error")
                        elif msg.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSED):
                            break
                finally:
                    subscriber.cancel()
                    self.connected = False

    async def run(self) -> None:
        while not self._stopping:
            try:
                await self._session_once()
                logger.warning("Kraken WS closed. Reconnecting in %.0fs", RECONNECT_DELAY_SEC)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.error("feed.ws_error", extra={"event": "feed_ws_error", "error": str(e)})
            self.connected = False
            if not self._stopping:
                await asyncio.sleep(RECONNECT_DELAY_SEC)

    def start(self) -> "KrakenFeed":
        if self._thread and self._thread.is_alive():
            return self
        self._stopping = False
        self._loop = asyncio.new_event_loop()

        def _run():
            asyncio.set_event_loop(self._loop)
            self._loop.run_until_complete(self.run())

        self._thread = threading.Thread(target=_run, name="kraken-feed", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stopping = True


__all__ = ["KrakenFeed", "parse_ticker_message", "discover_pairs", "resolve_pairs"]
