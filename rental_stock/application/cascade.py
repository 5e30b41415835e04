from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rental_stock.domain.errors import PreconditionFailedError
from rental_stock.domain.models import Allocation, Item, Unit
from rental_stock.domain.status import UnitStatus


def ensure_nothing_rented(db: Session, item_ids, what: str) -> None:
    """Block a destructive delete while any of the items has units out."""
    if not item_ids:
        return
    rented = db.execute(
        select(func.count(Unit.id)).where(
            Unit.item_id.in_(list(item_ids)), Unit.status == UnitStatus.RENTED
        )
    ).scalar_one()
    if rented:
        raise PreconditionFailedError(
            f"Cannot delete {what}: {rented} unit(s) are still rented out; release them first"
        )


def purge_item(db: Session, item: Item) -> int:
    """Delete an item with its units and allocation history. Returns the unit count."""
    for allocation in db.execute(select(Allocation).where(Allocation.item_id == item.id)).scalars().all():
        db.delete(allocation)
    units = db.execute(select(Unit).where(Unit.item_id == item.id)).scalars().all()
    for unit in units:
        db.delete(unit)
    db.flush()
    db.expire(item, ["units", "allocations"])
    db.delete(item)
    db.flush()
    return len(units)
