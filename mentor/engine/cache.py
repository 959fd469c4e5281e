import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError

from ..schemas.coaching import CoachingCard
from ..utils.dates import utc_now
from .fingerprint import STORAGE_PREFIX, EntityCounts, Fingerprint

logger = logging.getLogger(__name__)

Compute = Callable[[], Awaitable[CoachingCard]]


class CacheEntry(BaseModel):
    fingerprint: Fingerprint
    card: CoachingCard
    computed_at: datetime


class CardCache:
    """Fingerprint-keyed card cache owned by one engine.

    Entries restored from storage are kept raw and validated on read, so a
    corrupted entry only costs a recomputation.
    """

    def __init__(self, max_entries: int = 32) -> None:
        self._store: Dict[str, Union[CacheEntry, Dict[str, Any]]] = {}
        self._inflight: Dict[str, "asyncio.Future[CoachingCard]"] = {}
        self._lock = asyncio.Lock()
        self._max_entries = max_entries
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._store)

    def _read(self, key: str) -> Optional[CacheEntry]:
        raw = self._store.get(key)
        if raw is None:
            return None
        if isinstance(raw, CacheEntry):
            return raw
        try:
            entry = CacheEntry.model_validate(raw)
        except ValidationError:
            logger.warning("[CardCache] Dropping malformed entry %s", key)
            self._store.pop(key, None)
            return None
        if entry.fingerprint.key != key:
            logger.warning("[CardCache] Entry under %s carries fingerprint %s, dropping", key, entry.fingerprint.key)
            self._store.pop(key, None)
            return None
        self._store[key] = entry
        return entry

    def _purge_conflicting(self, live: EntityCounts) -> int:
        stale: List[str] = []
        for key in list(self._store):
            entry = self._read(key)
            if entry is not None and entry.fingerprint.conflicts_with(live):
                stale.append(key)
        for key in stale:
            self._store.pop(key, None)
        if stale:
            logger.info("[CardCache] Invalidated %d entries after data changed underneath them", len(stale))
        return len(stale)

    def _evict(self) -> None:
        while len(self._store) > self._max_entries:
            entries = [(key, self._read(key)) for key in list(self._store)]
            valid = [(key, entry) for key, entry in entries if entry is not None]
            if not valid:
                break
            oldest_key, _ = min(valid, key=lambda item: item[1].computed_at)
            self._store.pop(oldest_key, None)
            logger.debug("[CardCache] Evicted %s", oldest_key)

    def peek(self, fingerprint: Fingerprint) -> Optional[CoachingCard]:
        entry = self._read(fingerprint.key)
        if entry is None or entry.fingerprint.conflicts_with(fingerprint.counts):
            return None
        return entry.card

    async def get_or_compute(self, fingerprint: Fingerprint, compute: Compute, live: Optional[EntityCounts] = None) -> Tuple[CoachingCard, bool]:
        """Return ``(card, cache_hit)``.

        Concurrent callers for the same fingerprint share one computation.
        """
        key = fingerprint.key
        async with self._lock:
            if live is not None:
                self._purge_conflicting(live)
            entry = self._read(key)
            if entry is not None:
                self.hits += 1
                return entry.card, True
            task = self._inflight.get(key)
            if task is None:
                self.misses += 1
                task = asyncio.ensure_future(self._compute_and_store(fingerprint, compute))
                self._inflight[key] = task
                task.add_done_callback(partial(self._forget, key))
            else:
                logger.debug("[CardCache] Joining in-flight computation for %s", key)
        card = await asyncio.shield(task)
        return card, False

    async def _compute_and_store(self, fingerprint: Fingerprint, compute: Compute) -> CoachingCard:
        card = await compute()
        async with self._lock:
            self._store[fingerprint.key] = CacheEntry(fingerprint=fingerprint, card=card, computed_at=utc_now())
            self._evict()
        return card

    def _forget(self, key: str, task: "asyncio.Future[CoachingCard]") -> None:
        if self._inflight.get(key) is task:
            self._inflight.pop(key, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("[CardCache] Computation for %s failed: %s", key, task.exception())

    async def invalidate(self, fingerprint: Fingerprint) -> bool:
        async with self._lock:
            return self._store.pop(fingerprint.key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._store.clear()

    def export(self) -> List[Dict[str, Any]]:
        entries = [self._read(key) for key in list(self._store)]
        return [entry.model_dump(mode="json") for entry in entries if entry is not None]

    def restore(self, entries: Iterable[Any]) -> int:
        restored = 0
        for raw in entries:
            key = None
            if isinstance(raw, dict):
                fingerprint = raw.get("fingerprint")
                if isinstance(fingerprint, dict) and isinstance(fingerprint.get("digest"), str):
                    key = f"{STORAGE_PREFIX}{fingerprint['digest']}"
            if key is None:
                logger.warning("[CardCache] Skipping restored entry without a fingerprint")
                continue
            self._store[key] = raw
            restored += 1
        self._evict()
        return restored
