"""
app/core/cache_manager.py — In-memory cache gateway
Stores structured Gemini results (question batches, validation outcomes)
under deterministic keys with per-entry TTL.
Reads never evict; expired entries are removed by sweep(), which the
CacheSweeper runs on a fixed period independent of request traffic.
"""
from __future__ import annotations

import hashlib
from typing import Any, Optional

from loguru import logger

from app.core import logging as app_logging
from app.core.clock import Clock, SystemClock
from app.models import CacheData, CacheEntry, CacheLookup


# ──────────────────────────────────────────────────────────────────────────────
# Key derivation — must stay bit-stable for persisted caches
# ──────────────────────────────────────────────────────────────────────────────

def hash_code(code: str) -> str:
    """SHA-256 hex digest of submitted code, exactly as submitted."""
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def question_cache_key(subtopic_id: int, difficulty: str) -> str:
    """Key for a question batch: questions:{subtopic_id}:{difficulty}"""
    return f"questions:{subtopic_id}:{difficulty}"


def validation_cache_key(code: str, exercise_id: int) -> str:
    """Key for a validation outcome: validation:{sha256(code)}:{exercise_id}"""
    return f"validation:{hash_code(code)}:{exercise_id}"


# ──────────────────────────────────────────────────────────────────────────────
# Gateway
# ──────────────────────────────────────────────────────────────────────────────

class CacheGateway:
    """
    Key → CacheEntry store. Concurrent reads and writes need no ordering
    beyond last-writer-wins per key.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        max_entries: int = 1000,
        data: Optional[CacheData] = None,
    ) -> None:
        self._clock: Clock = clock or SystemClock()
        self._max_entries = max_entries
        self._data = data or CacheData()

    def __len__(self) -> int:
        return len(self._data.entries)

    def lookup(self, key: str) -> CacheLookup:
        """Return the payload if present and still within its TTL."""
        entry = self._data.entries.get(key)
        if entry is None or not entry.is_live(self._clock.now()):
            app_logging.log_cache_lookup(key, hit=False, cached_size=0)
            return CacheLookup(found=False)
        app_logging.log_cache_lookup(key, hit=True, cached_size=len(entry.payload))
        return CacheLookup(found=True, payload=list(entry.payload))

    def lookup_batch(self, key: str, quantity: int) -> CacheLookup:
        """
        Batch semantics: a hit only if the cached payload holds at least
        `quantity` items. A shorter payload is a full miss; the caller
        regenerates the whole batch rather than topping it up.
        """
        entry = self._data.entries.get(key)
        live = entry is not None and entry.is_live(self._clock.now())
        cached_size = len(entry.payload) if live else 0
        hit = live and cached_size >= quantity
        app_logging.log_cache_lookup(key, hit=hit, cached_size=cached_size, requested=quantity)
        if not hit:
            return CacheLookup(found=False)
        return CacheLookup(found=True, payload=list(entry.payload))

    def store(self, key: str, payload: list[dict[str, Any]], ttl_seconds: float) -> CacheEntry:
        """Store (or replace) an entry. Enforces the entry cap oldest-first."""
        entry = CacheEntry(
            key=key,
            payload=list(payload),
            stored_at=self._clock.now(),
            ttl_seconds=ttl_seconds,
        )
        # Re-insert so dict order tracks store time
        self._data.entries.pop(key, None)
        self._data.entries[key] = entry
        self._enforce_cap()
        return entry

    def invalidate(self, key: str) -> bool:
        return self._data.entries.pop(key, None) is not None

    def sweep(self, now: Optional[float] = None) -> int:
        """Remove every entry with stored_at + ttl <= now. Returns count removed."""
        if now is None:
            now = self._clock.now()
        expired = [
            k for k, v in self._data.entries.items()
            if not v.is_live(now)
        ]
        for k in expired:
            del self._data.entries[k]
        self._data.last_sweep = now
        if expired:
            logger.info(f"Cache sweep removed {len(expired)} expired entries ({len(self)} remain).")
        return len(expired)

    def _enforce_cap(self) -> None:
        overage = len(self._data.entries) - self._max_entries
        if overage <= 0:
            return
        oldest = sorted(
            self._data.entries.keys(),
            key=lambda k: self._data.entries[k].stored_at,
        )
        for k in oldest[:overage]:
            del self._data.entries[k]
        logger.warning(f"Cache cap {self._max_entries} reached; evicted {overage} oldest entries.")

    def snapshot(self) -> CacheData:
        """Deep copy in the persisted cache shape."""
        return self._data.model_copy(deep=True)
