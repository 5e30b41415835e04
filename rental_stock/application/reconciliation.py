from dataclasses import dataclass, field
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_stock.application.counters import count_by_status, refresh_item_counters
from rental_stock.application.identifiers import IdentifierGenerator
from rental_stock.core_settings import get_settings
from rental_stock.domain.errors import PreconditionFailedError, ValidationError
from rental_stock.domain.models import Item, Unit
from rental_stock.domain.status import UnitStatus
from rental_stock.infrastructure.cache import mark_item_touched
from rental_stock.infrastructure.locking import item_guard
from shared.core import get_logger

logger = get_logger(__name__)

# Units that make up an item's declared quantity; RETIRED units are history
POPULATION = (UnitStatus.IN_STOCK, UnitStatus.RENTED, UnitStatus.MAINTENANCE)
# Units that reconciliation must never remove
HELD = (UnitStatus.RENTED, UnitStatus.MAINTENANCE)


@dataclass
class ReconcileResult:
    item: Item
    created: List[Unit] = field(default_factory=list)
    retired_serials: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.retired_serials)


def validate_quantity(quantity, allow_zero: bool = True) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Quantity must be a whole number")
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise ValidationError(
            "Quantity must be greater than zero" if not allow_zero else "Quantity cannot be negative"
        )
    return quantity


class ReconciliationEngine:
    """Aligns an item's unit population with its declared quantity."""

    def __init__(self, db: Session):
        self.db = db
        self.identifiers = IdentifierGenerator(db, prefix_length=get_settings().SERIAL_PREFIX_LENGTH)

    def reconcile(self, item_id: int, target_quantity: int) -> ReconcileResult:
        validate_quantity(target_quantity)
        with item_guard(self.db, item_id) as item:
            result = self.apply(item, target_quantity)

        if result.changed:
            logger.info(
                f"Item {item_id} reconciled to {target_quantity} units",
                extra={'extra_fields': {
                    'item_id': item_id,
                    'created': len(result.created),
                    'retired': len(result.retired_serials),
                }}
            )
        return result

    def apply(self, item: Item, target_quantity: int) -> ReconcileResult:
        """Reconcile ``item`` inside the caller's transaction.

        The current quantity counts IN_STOCK, RENTED and MAINTENANCE units;
        RETIRED units are history and are never counted or removed. Shrinking
        deletes IN_STOCK units only and fails if RENTED plus MAINTENANCE
        already exceeds the target.

        The caller must hold the item's lock and owns commit/rollback, so a
        failure anywhere leaves no unit created or removed.
        """
        counts = count_by_status(self.db, item.id)
        current = sum(counts[status] for status in POPULATION)
        result = ReconcileResult(item=item)

        if target_quantity > current:
            result.created = self._provision(item, target_quantity - current)
        elif target_quantity < current:
            held = sum(counts[status] for status in HELD)
            if held > target_quantity:
                raise PreconditionFailedError(
                    f"Cannot shrink below units currently allocated: item {item.id} has {held} "
                    f"unit(s) rented out or in maintenance, requested quantity {target_quantity}"
                )
            result.retired_serials = self._retire(item, current - target_quantity)
        else:
            return result

        refresh_item_counters(self.db, item)
        mark_item_touched(self.db, item.id)
        return result

    def _provision(self, item: Item, count: int) -> List[Unit]:
        serials = self.identifiers.serials(item.name, item.id, count)
        barcodes = self.identifiers.barcodes(count)
        units = [
            Unit(
                item_id=item.id,
                serial_number=serial,
                barcode=barcode,
                status=UnitStatus.IN_STOCK,
                location=item.location,
            )
            for serial, barcode in zip(serials, barcodes)
        ]
        self.db.add_all(units)
        self.db.flush()
        return units

    def _retire(self, item: Item, count: int) -> List[str]:
        # Newest stock goes first
        victims = self.db.execute(
            select(Unit)
            .where(Unit.item_id == item.id, Unit.status == UnitStatus.IN_STOCK)
            .order_by(Unit.id.desc())
            .limit(count)
        ).scalars().all()
        serials = [unit.serial_number for unit in victims]
        for unit in victims:
            self.db.delete(unit)
        self.db.flush()
        return serials
