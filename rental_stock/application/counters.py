"""Derived counts, always computed from the units and items tables."""

from typing import Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rental_stock.domain.models import Category, Item, Unit
from rental_stock.domain.status import UnitStatus


def count_by_status(db: Session, item_id: int) -> Dict[UnitStatus, int]:
    rows = db.execute(
        select(Unit.status, func.count(Unit.id))
        .where(Unit.item_id == item_id)
        .group_by(Unit.status)
    ).all()
    counts = {status: 0 for status in UnitStatus}
    for status, count in rows:
        counts[UnitStatus(status)] = count
    return counts


def count_available(db: Session, item_id: int) -> int:
    return db.execute(
        select(func.count(Unit.id)).where(
            Unit.item_id == item_id, Unit.status == UnitStatus.IN_STOCK
        )
    ).scalar_one()


def refresh_item_counters(db: Session, item: Item) -> Dict[UnitStatus, int]:
    """Rewrite the cached counters of ``item`` from its units.

    Must run in the same transaction as the unit mutation it follows.
    """
    db.flush()
    counts = count_by_status(db, item.id)
    item.quantity_in_stock = counts[UnitStatus.IN_STOCK]
    item.quantity_rented_out = counts[UnitStatus.RENTED]
    return counts


def refresh_category_count(db: Session, category: Category) -> int:
    db.flush()
    category.item_count = db.execute(
        select(func.count(Item.id)).where(Item.category_id == category.id)
    ).scalar_one()
    return category.item_count
