"""Per-item serialization of unit mutations.

Every write that changes an item's unit population or unit statuses runs
inside ``item_guard``: the in-process lock for that item is taken first, then
the item row is selected ``FOR UPDATE`` inside the transaction, so other
processes sharing a PostgreSQL database are serialized as well. The lock is
held until the transaction commits or rolls back.
"""

import threading
import weakref
from contextlib import ExitStack, contextmanager
from typing import Iterable, Iterator, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_stock.domain.errors import NotFoundError
from rental_stock.domain.models import Item
from rental_stock.infrastructure.db import transaction

# An entry lives only while some caller holds or waits on its lock
_ITEM_LOCKS: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
_REGISTRY_LOCK = threading.Lock()


def _lock_for(item_id: int) -> threading.Lock:
    with _REGISTRY_LOCK:
        lock = _ITEM_LOCKS.get(item_id)
        if lock is None:
            lock = _ITEM_LOCKS[item_id] = threading.Lock()
        return lock


def _select_for_update(db: Session, item_ids: List[int]) -> List[Item]:
    stmt = (
        select(Item)
        .where(Item.id.in_(item_ids))
        .order_by(Item.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(db.execute(stmt).scalars())


@contextmanager
def item_guard(db: Session, item_id: int) -> Iterator[Item]:
    """Lock one item and run the enclosed block as a single transaction."""
    with _lock_for(item_id):
        with transaction(db):
            items = _select_for_update(db, [item_id])
            if not items:
                raise NotFoundError(f"Item {item_id} not found")
            yield items[0]


@contextmanager
def items_guard(db: Session, item_ids: Iterable[int]) -> Iterator[List[Item]]:
    """Lock several items in ascending id order within one transaction.

    Items that do not exist are simply absent from the yielded list.
    """
    ordered = sorted(set(item_ids))
    with ExitStack() as stack:
        for item_id in ordered:
            stack.enter_context(_lock_for(item_id))
        with transaction(db):
            yield _select_for_update(db, ordered) if ordered else []
