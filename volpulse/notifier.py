"""Slack webhook delivery for step alerts and digests.

Fire-and-forget: posts run on a small worker pool so the engine never waits on
the network, and delivery errors are logged here and never propagate back.
"""
from __future__ import annotations
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, Future
from typing import Optional, Any, Dict

import requests
from requests.exceptions import RequestException

logger = logging.getLogger(__name__)


class SlackNotifier:
    def __init__(self,
                 webhook_url: Optional[str],
                 timeout: float = 10.0,
                 max_workers: int = 2,
                 session: Optional[requests.Session] = None):
        self.webhook_url = webhook_url or None
        self.timeout = timeout
        self._session = session or requests.Session()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='slack')
        self._lock = threading.Lock()
        self.stats: Dict[str, int] = {'sent': 0, 'failed': 0, 'skipped': 0}

    @classmethod
    def from_settings(cls, settings) -> 'SlackNotifier':
        return cls(webhook_url=settings.slack_webhook_url)

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def _bump(self, key: str):
        with self._lock:
            self.stats[key] += 1

    def _post(self, payload: Dict[str, Any]) -> bool:
        try:
            resp = self._session.post(self.webhook_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except RequestException as e:
            self._bump('failed')
            logger.warning('notify.webhook_failed', extra={'event': 'notify_webhook_failed', 'error': str(e)})
            return False
        except Exception:
            self._bump('failed')
            logger.exception('notify.webhook_failed', extra={'event': 'notify_webhook_failed'})
            return False
        self._bump('sent')
        return True

    def send(self, text: str, blocks: Optional[list] = None) -> Optional[Future]:
        if not self.enabled:
            self._bump('skipped')
            logger.info('notify.skipped %s', text.splitlines()[0] if text else '')
            return None
        payload: Dict[str, Any] = {'text': text}
        if blocks:
            payload['blocks'] = blocks
        return self._pool.submit(self._post, payload)

    def close(self):
        self._pool.shutdown(wait=False)


__all__ = ['SlackNotifier']
