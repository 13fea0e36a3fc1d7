"""
In-process caches.

``ChainOrderCache`` holds the latest snapshot of all chain orders so admin
reads do not replay the event log on every request. ``ResponseCache`` is a
small keyed store with ETags, owned by whichever view module serves cached
JSON.
"""
import hashlib
import json
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from escrow.utils import now_ms


class ChainOrderCache:

    def __init__(self, fetch: Callable[[], List[Any]], ttl_ms: int = 30000,
                 max_age_ms: int = 300000):
        self._fetch = fetch
        self.ttl_ms = ttl_ms
        self.max_age_ms = max_age_ms
        self._lock = threading.Lock()
        self._orders: Dict[str, Any] = {}
        self._fetched_at = 0
        self.hits = 0
        self.misses = 0

    def _age_ms(self) -> Optional[int]:
        if not self._fetched_at:
            return None
        return now_ms() - self._fetched_at

    def fetch_all(self, force_refresh: bool = False) -> List[Any]:
        with self._lock:
            age = self._age_ms()
            if not force_refresh and age is not None and age < self.ttl_ms:
                self.hits += 1
                return list(self._orders.values())

            self.misses += 1
            try:
                orders = self._fetch()
            except Exception as exc:
                if not force_refresh and age is not None and age < self.max_age_ms:
                    logger.warning(
                        'Chain order fetch failed, serving snapshot aged {}ms: {}', age, exc)
                    return list(self._orders.values())
                raise

            self._orders = {str(order.order_id): order for order in orders}
            self._fetched_at = now_ms()
            return list(orders)

    def find(self, order_id: str, force_refresh: bool = False) -> Optional[Any]:
        self.fetch_all(force_refresh=force_refresh)
        return self._orders.get(str(order_id))

    def clear(self) -> None:
        with self._lock:
            self._orders = {}
            self._fetched_at = 0
            self.hits = 0
            self.misses = 0
        logger.info('Chain order cache cleared')

    def stats(self) -> Dict[str, Any]:
        return {
            'hits': self.hits,
            'misses': self.misses,
            'orderCount': len(self._orders),
            'lastFetch': self._fetched_at or None,
            'cacheAgeMs': self._age_ms(),
            'ttlMs': self.ttl_ms,
            'maxAgeMs': self.max_age_ms,
        }

    def order_stats(self) -> Dict[str, Any]:
        orders = list(self._orders.values())
        by_status = Counter(str(order.status) for order in orders)
        created = sorted(int(order.created_at or 0) for order in orders)
        return {
            'total': len(orders),
            'byStatus': dict(by_status),
            'oldestCreatedAt': created[0] if created else None,
            'newestCreatedAt': created[-1] if created else None,
        }


@dataclass
class CacheEntry:
    value: Any
    expires_at: int
    etag: Optional[str] = None


def compute_json_etag(value: Any) -> str:
    payload = json.dumps(value, sort_keys=True, default=str, separators=(',', ':'))
    return '"' + hashlib.sha1(payload.encode('utf-8')).hexdigest() + '"'


class ResponseCache:

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= now_ms():
            self._entries.pop(key, None)
            return None
        return entry

    def set(self, key: str, value: Any, ttl_ms: int, etag: Optional[str] = None) -> CacheEntry:
        entry = CacheEntry(
            value=value,
            expires_at=now_ms() + ttl_ms,
            etag=etag or compute_json_etag(value),
        )
        self._entries[key] = entry
        return entry

    def clear(self) -> None:
        self._entries.clear()
