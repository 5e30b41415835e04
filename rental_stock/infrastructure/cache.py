"""Read-through cache for the availability query surface.

Item-selection screens poll availability far more often than stock changes,
so answers are cached briefly. Entries are dropped in the ``after_commit``
hook of the session that changed the item, never by a separate client call.
Allocation decisions never read from this cache.
"""

import threading
from typing import Callable, Dict, Iterable

from cachetools import TTLCache
from sqlalchemy import event
from sqlalchemy.orm import Session

TOUCHED_ITEMS_KEY = "touched_item_ids"


class AvailabilityCache:
    def __init__(self, maxsize: int = 1024, ttl: float = 5.0):
        self._cache = TTLCache(maxsize=maxsize, ttl=ttl)
        # Bumped on every invalidation; a load that raced a commit is not stored
        self._generations: Dict[int, int] = {}
        self._lock = threading.Lock()

    def get_or_load(self, item_id: int, loader: Callable[[int], int]) -> int:
        with self._lock:
            if item_id in self._cache:
                return self._cache[item_id]
            generation = self._generations.get(item_id, 0)
        value = loader(item_id)
        with self._lock:
            if self._generations.get(item_id, 0) == generation:
                self._cache[item_id] = value
        return value

    def invalidate(self, item_ids: Iterable[int]) -> None:
        with self._lock:
            for item_id in item_ids:
                self._cache.pop(item_id, None)
                self._generations[item_id] = self._generations.get(item_id, 0) + 1

    def clear(self) -> None:
        with self._lock:
            for item_id in list(self._cache.keys()):
                self._generations[item_id] = self._generations.get(item_id, 0) + 1
            self._cache.clear()

    def __contains__(self, item_id: int) -> bool:
        with self._lock:
            return item_id in self._cache


_availability_cache = None
_cache_lock = threading.Lock()


def get_availability_cache() -> AvailabilityCache:
    global _availability_cache
    with _cache_lock:
        if _availability_cache is None:
            from rental_stock.core_settings import get_settings
            settings = get_settings()
            _availability_cache = AvailabilityCache(
                maxsize=settings.AVAILABILITY_CACHE_SIZE,
                ttl=settings.AVAILABILITY_CACHE_TTL_SECONDS,
            )
        return _availability_cache


def mark_item_touched(db: Session, item_id: int) -> None:
    """Record that the current transaction changed ``item_id``'s units."""
    db.info.setdefault(TOUCHED_ITEMS_KEY, set()).add(item_id)


@event.listens_for(Session, "after_commit")
def _invalidate_after_commit(session: Session) -> None:
    touched = session.info.pop(TOUCHED_ITEMS_KEY, None)
    if touched:
        get_availability_cache().invalidate(touched)


@event.listens_for(Session, "after_soft_rollback")
def _forget_after_rollback(session: Session, previous_transaction) -> None:
    session.info.pop(TOUCHED_ITEMS_KEY, None)
