from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_stock.application.schemas import UnitSnapshot
from rental_stock.domain.errors import NotFoundError
from rental_stock.domain.models import Item, Unit
from rental_stock.infrastructure.db import retry_read

class LookupGateway:
    """Resolves a scanned serial number or barcode to a read-only unit snapshot.

    Callers reach this only after the authentication boundary has verified
    the viewer; nothing here writes.
    """

    def __init__(self, db: Session):
        self.db = db

    @retry_read
    def lookup(self, serial: str) -> UnitSnapshot:
        serial = (serial or "").strip()
        return self._snapshot(Unit.serial_number == serial, f"No unit with serial number {serial}")

    @retry_read
    def lookup_barcode(self, barcode: str) -> UnitSnapshot:
        barcode = (barcode or "").strip()
        return self._snapshot(Unit.barcode == barcode, f"No unit with barcode {barcode}")

    def _snapshot(self, condition, not_found: str) -> UnitSnapshot:
        row = self.db.execute(
            select(Unit, Item).join(Item, Unit.item_id == Item.id).where(condition)
        ).first()
        if row is None:
            raise NotFoundError(not_found)
        unit, item = row
        return UnitSnapshot(
            serial_number=unit.serial_number,
            name=item.name,
            model=item.model,
            location=unit.location or item.location,
            warranty=unit.warranty_expiry,
            status=unit.status,
            notes=unit.notes,
            barcode=unit.barcode,
        )
