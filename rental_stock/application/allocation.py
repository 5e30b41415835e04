from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rental_stock.application.counters import count_available, refresh_item_counters
from rental_stock.application.reconciliation import validate_quantity
from rental_stock.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from rental_stock.domain.models import Allocation, AllocationUnit, Unit
from rental_stock.domain.status import UnitStatus
from rental_stock.infrastructure.cache import mark_item_touched
from rental_stock.infrastructure.db import retry_read
from rental_stock.infrastructure.locking import item_guard, items_guard
from shared.core import get_logger

logger = get_logger(__name__)

CONSUMER_REF_MAX_LENGTH = 100


@dataclass
class AllocationResult:
    allocation: Allocation
    units: List[Unit]


def _clean_consumer_ref(consumer_ref: Optional[str]) -> str:
    cleaned = (consumer_ref or "").strip()
    if not cleaned:
        raise ValidationError("A consumer reference is required")
    if len(cleaned) > CONSUMER_REF_MAX_LENGTH:
        raise ValidationError(f"Consumer reference longer than {CONSUMER_REF_MAX_LENGTH} characters")
    return cleaned


class AllocationEngine:
    """Reserves units for rentals, sales and service calls, and gives them back.

    ``allocate`` checks availability and claims the units inside one
    transaction holding the item's lock; callers never pass in a count they
    read earlier.
    """

    def __init__(self, db: Session):
        self.db = db

    def allocate(self, item_id: int, quantity: int, consumer_ref: str) -> AllocationResult:
        validate_quantity(quantity, allow_zero=False)
        consumer_ref = _clean_consumer_ref(consumer_ref)

        with item_guard(self.db, item_id) as item:
            available = count_available(self.db, item.id)
            if quantity > available:
                raise InsufficientStockError(item.id, quantity, available)

            unit_ids = list(self.db.execute(
                select(Unit.id)
                .where(Unit.item_id == item.id, Unit.status == UnitStatus.IN_STOCK)
                .order_by(Unit.id)
                .limit(quantity)
            ).scalars())
            now = datetime.utcnow()
            # Compare-and-swap: only rows still IN_STOCK flip
            claimed = self.db.execute(
                update(Unit)
                .where(Unit.id.in_(unit_ids), Unit.status == UnitStatus.IN_STOCK)
                .values(status=UnitStatus.RENTED, consumer_ref=consumer_ref, updated_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed != quantity:
                raise InsufficientStockError(item.id, quantity, claimed)

            units = list(self.db.execute(
                select(Unit)
                .where(Unit.id.in_(unit_ids))
                .order_by(Unit.id)
                .execution_options(populate_existing=True)
            ).scalars())
            allocation = Allocation(item_id=item.id, consumer_ref=consumer_ref, created_at=now)
            allocation.lines = [
                AllocationUnit(unit_id=unit.id, serial_number=unit.serial_number) for unit in units
            ]
            self.db.add(allocation)
            refresh_item_counters(self.db, item)
            mark_item_touched(self.db, item.id)

        logger.info(
            f"Allocated {quantity} unit(s) of item {item_id} to {consumer_ref}",
            extra={'extra_fields': {
                'item_id': item_id,
                'allocation_id': allocation.id,
                'consumer_ref': consumer_ref,
                'serials': [unit.serial_number for unit in units],
            }}
        )
        return AllocationResult(allocation=allocation, units=units)

    def release(self, unit_ids: Iterable[int]) -> List[Unit]:
        """Return rented units to stock. Units that are not RENTED are left alone.

        Every id must exist; otherwise nothing is released.
        """
        ids = list(dict.fromkeys(unit_ids))
        if not ids:
            return []
        owners = dict(self.db.execute(select(Unit.id, Unit.item_id).where(Unit.id.in_(ids))).all())
        missing = [unit_id for unit_id in ids if unit_id not in owners]
        if missing:
            raise NotFoundError(f"Unit(s) not found: {', '.join(str(m) for m in missing)}")

        with items_guard(self.db, owners.values()) as items:
            units = list(self.db.execute(
                select(Unit)
                .where(Unit.id.in_(ids))
                .order_by(Unit.id)
                .execution_options(populate_existing=True)
            ).scalars())
            if len(units) != len(ids):
                gone = sorted(set(ids) - {unit.id for unit in units})
                raise NotFoundError(f"Unit(s) not found: {', '.join(str(g) for g in gone)}")

            released = [unit for unit in units if unit.status == UnitStatus.RENTED]
            if released:
                self._close_lines([unit.id for unit in released])
                for unit in released:
                    unit.status = UnitStatus.IN_STOCK
                    unit.consumer_ref = None
                touched = {unit.item_id for unit in released}
                for item in items:
                    if item.id in touched:
                        refresh_item_counters(self.db, item)
                        mark_item_touched(self.db, item.id)

        if released:
            logger.info(
                f"Released {len(released)} unit(s)",
                extra={'extra_fields': {'serials': [unit.serial_number for unit in released]}}
            )
        return released

    def release_consumer(self, consumer_ref: str) -> List[Unit]:
        """Release everything a consumer holds, e.g. when its rental is cancelled."""
        consumer_ref = _clean_consumer_ref(consumer_ref)
        unit_ids = list(self.db.execute(
            select(Unit.id)
            .where(Unit.consumer_ref == consumer_ref, Unit.status == UnitStatus.RENTED)
            .order_by(Unit.id)
        ).scalars())
        return self.release(unit_ids)

    @retry_read
    def list_allocations(
        self,
        consumer_ref: Optional[str] = None,
        item_id: Optional[int] = None,
        active_only: bool = True,
    ) -> List[Allocation]:
        stmt = select(Allocation).order_by(Allocation.id)
        if consumer_ref:
            stmt = stmt.where(Allocation.consumer_ref == consumer_ref.strip())
        if item_id is not None:
            stmt = stmt.where(Allocation.item_id == item_id)
        if active_only:
            stmt = stmt.where(Allocation.released_at.is_(None))
        return list(self.db.execute(stmt).scalars())

    def _close_lines(self, unit_ids: List[int]) -> None:
        now = datetime.utcnow()
        lines = self.db.execute(
            select(AllocationUnit).where(
                AllocationUnit.unit_id.in_(unit_ids), AllocationUnit.released_at.is_(None)
            )
        ).scalars().all()
        for line in lines:
            line.released_at = now
        self.db.flush()

        allocation_ids = {line.allocation_id for line in lines}
        if not allocation_ids:
            return
        still_open = set(self.db.execute(
            select(AllocationUnit.allocation_id).where(
                AllocationUnit.allocation_id.in_(allocation_ids),
                AllocationUnit.released_at.is_(None),
            )
        ).scalars())
        for allocation in self.db.execute(
            select(Allocation).where(Allocation.id.in_(allocation_ids - still_open))
        ).scalars():
            allocation.released_at = now
