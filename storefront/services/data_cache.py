"""
Data Cache

Two-tier cache (process memory in front of durable storage) for backend
reads. Per key the lifecycle is:

    empty -> fresh -> stale-usable -> expired

- fresh (age <= ttl): served without touching the backend.
- stale-usable (ttl < age <= ttl + stale_grace): served immediately while a
  single background refresh replaces the entry. A failed refresh is logged
  and the stale entry stays.
- expired: the caller waits for a fetch. Concurrent callers for the same key
  share one in-flight fetch.

Entries are replaced whole, never patched.
"""

import asyncio
import functools
import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Optional

from ..core.errors import StorageError
from ..storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


@dataclass
class CacheEntry:
    """Cached payload with its insertion time and lifetime"""
    key: str
    data: Any
    timestamp: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now <= self.timestamp + self.ttl

    def is_usable(self, now: float, stale_grace: float) -> bool:
        return now <= self.timestamp + self.ttl + stale_grace

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        payload = json.loads(raw)
        return cls(
            key=payload["key"],
            data=payload["data"],
            timestamp=float(payload["timestamp"]),
            ttl=float(payload["ttl"]),
        )


class DataCache:
    """
    Stale-while-revalidate cache with request deduplication.

    Construct one per session and pass it to whatever reads through it;
    `clear()` wipes both tiers (logout, admin refresh).
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        default_ttl: float = 300.0,
        stale_grace: float = 300.0,
        key_prefix: str = "storefront-cache:",
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.default_ttl = default_ttl
        self.stale_grace = stale_grace
        self.key_prefix = key_prefix
        self._clock = clock
        self._memory: dict[str, CacheEntry] = {}
        self._pending: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._versions: dict[str, int] = {}
        self._epoch = 0
        self._counters = {"hits": 0, "stale_hits": 0, "misses": 0}

    # ==================== Reads ====================

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Fetcher,
        ttl: Optional[float] = None,
        persist: bool = True,
    ) -> Any:
        """Return the cached value for key, fetching it when there is none usable"""
        now = self._clock()
        self._purge_memory(now)
        entry = self._lookup(key, now)

        if entry is not None and entry.is_fresh(now):
            self._counters["hits"] += 1
            logger.debug(f"Cache hit: {key}")
            return entry.data

        if entry is not None:
            self._counters["stale_hits"] += 1
            logger.debug(f"Serving stale entry for {key}, revalidating")
            self._revalidate(key, fetcher, ttl, persist)
            return entry.data

        self._counters["misses"] += 1
        task = self._pending.get(key)
        if task is not None:
            logger.debug(f"Joining in-flight fetch for {key}")
        else:
            logger.debug(f"Cache miss: {key}")
            task = self._start_fetch(key, fetcher, ttl, persist)

        # Shielded so a cancelled caller doesn't cancel the fetch others share
        return await asyncio.shield(task)

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Current usable entry for key without fetching"""
        return self._lookup(key, self._clock())

    def _lookup(self, key: str, now: float) -> Optional[CacheEntry]:
        entry = self._memory.get(key)
        if entry is not None:
            if entry.is_usable(now, self.stale_grace):
                return entry
            del self._memory[key]
            self._delete_persisted(key)
            return None

        entry = self._read_persisted(key)
        if entry is None:
            return None
        if not entry.is_usable(now, self.stale_grace):
            self._delete_persisted(key)
            return None

        # Restore with the original timestamp so age keeps counting
        self._memory[key] = entry
        return entry

    def _purge_memory(self, now: float) -> None:
        expired = [
            k for k, e in self._memory.items()
            if not e.is_usable(now, self.stale_grace)
        ]
        for k in expired:
            del self._memory[k]

    # ==================== Fetching ====================

    def _start_fetch(
        self,
        key: str,
        fetcher: Fetcher,
        ttl: Optional[float],
        persist: bool,
    ) -> asyncio.Task:
        token = (self._epoch, self._versions.get(key, 0))
        task = asyncio.create_task(self._fetch_and_store(key, fetcher, ttl, persist, token))
        self._pending[key] = task
        task.add_done_callback(functools.partial(self._fetch_done, key))
        return task

    async def _fetch_and_store(
        self,
        key: str,
        fetcher: Fetcher,
        ttl: Optional[float],
        persist: bool,
        token: tuple[int, int],
    ) -> Any:
        data = await fetcher()
        if token == (self._epoch, self._versions.get(key, 0)):
            self._put(key, data, ttl, persist)
        else:
            logger.debug(f"Discarding fetch result for {key}: invalidated while in flight")
        return data

    def _fetch_done(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Fetch for {key} failed: {task.exception()}")

    def _revalidate(
        self,
        key: str,
        fetcher: Fetcher,
        ttl: Optional[float],
        persist: bool,
    ) -> None:
        if key in self._pending:
            return
        task = self._start_fetch(key, fetcher, ttl, persist)
        self._background.add(task)
        task.add_done_callback(functools.partial(self._revalidate_done, key))

    def _revalidate_done(self, key: str, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Background refresh of {key} failed, keeping stale entry: {error}")

    async def wait_for_background(self) -> None:
        """Wait for outstanding background refreshes to settle"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ==================== Writes ====================

    def set(
        self,
        key: str,
        data: Any,
        ttl: Optional[float] = None,
        persist: bool = True,
    ) -> None:
        """Store a value, superseding any fetch in flight for the key"""
        self._bump(key)
        self._put(key, data, ttl, persist)

    def _put(self, key: str, data: Any, ttl: Optional[float], persist: bool) -> None:
        entry = CacheEntry(
            key=key,
            data=data,
            timestamp=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        self._memory[key] = entry
        if persist:
            self._write_persisted(entry)

    def invalidate(self, key: str) -> None:
        self._bump(key)
        self._memory.pop(key, None)
        self._delete_persisted(key)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with prefix"""
        for key in list(self._pending):
            if key.startswith(prefix):
                self._bump(key)

        doomed = [k for k in self._memory if k.startswith(prefix)]
        for key in doomed:
            del self._memory[key]

        removed = len(doomed)
        if self.store is not None:
            try:
                removed = max(removed, self.store.delete_prefix(self.key_prefix + prefix))
            except StorageError as e:
                logger.warning(f"Failed to drop persisted entries under {prefix}: {e}")
        return removed

    def clear(self) -> None:
        """Wipe both tiers unconditionally"""
        self._epoch += 1
        self._pending.clear()
        self._memory.clear()
        if self.store is not None:
            try:
                removed = self.store.delete_prefix(self.key_prefix)
                logger.debug(f"Cleared {removed} persisted cache entries")
            except StorageError as e:
                logger.warning(f"Failed to clear persisted cache: {e}")

    def purge_expired(self) -> int:
        """Remove entries past their stale grace from both tiers"""
        now = self._clock()
        before = len(self._memory)
        self._purge_memory(now)
        removed = before - len(self._memory)

        if self.store is None:
            return removed
        try:
            for full_key in self.store.keys(self.key_prefix):
                key = full_key[len(self.key_prefix):]
                entry = self._read_persisted(key)
                if entry is None or not entry.is_usable(now, self.stale_grace):
                    self.store.delete(full_key)
                    removed += 1
        except StorageError as e:
            logger.warning(f"Failed to purge persisted cache: {e}")
        return removed

    def stats(self) -> dict[str, Any]:
        self._purge_memory(self._clock())
        return {
            "size": len(self._memory),
            "keys": sorted(self._memory),
            "pending": len(self._pending),
            **self._counters,
        }

    def _bump(self, key: str) -> None:
        if key in self._pending:
            self._versions[key] = self._versions.get(key, 0) + 1
            del self._pending[key]

    # ==================== Durable tier ====================

    def _read_persisted(self, key: str) -> Optional[CacheEntry]:
        if self.store is None:
            return None
        full_key = self.key_prefix + key
        try:
            raw = self.store.get(full_key)
        except StorageError as e:
            logger.warning(f"Failed to read persisted entry {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding corrupt persisted entry {key}: {e}")
            self._delete_persisted(key)
            return None

    def _write_persisted(self, entry: CacheEntry) -> None:
        if self.store is None:
            return
        try:
            self.store.set(self.key_prefix + entry.key, entry.to_json())
        except (StorageError, TypeError, ValueError) as e:
            logger.warning(f"Failed to persist cache entry {entry.key}: {e}")

    def _delete_persisted(self, key: str) -> None:
        if self.store is None:
            return
        try:
            self.store.delete(self.key_prefix + key)
        except StorageError as e:
            logger.warning(f"Failed to delete persisted entry {key}: {e}")
