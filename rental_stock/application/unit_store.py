from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from rental_stock.application.counters import refresh_item_counters
from rental_stock.application.schemas import UnitCreate, UnitUpdate
from rental_stock.domain.errors import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from rental_stock.domain.models import Item, Unit
from rental_stock.domain.status import UnitStatus, check_transition
from rental_stock.infrastructure.cache import mark_item_touched
from rental_stock.infrastructure.db import retry_read
from rental_stock.infrastructure.locking import item_guard
from shared.core import get_logger

logger = get_logger(__name__)

class UnitStore:
    """CRUD over units; every write holds the owning item's lock."""

    def __init__(self, db: Session):
        self.db = db

    @retry_read
    def get_unit(self, unit_id: int) -> Unit:
        unit = self.db.get(Unit, unit_id)
        if unit is None:
            raise NotFoundError(f"Unit {unit_id} not found")
        return unit

    @retry_read
    def list_units(
        self,
        item_id: Optional[int] = None,
        status: Optional[UnitStatus] = None,
        serial_number: Optional[str] = None,
    ):
        stmt = select(Unit).order_by(Unit.id)
        if serial_number:
            stmt = stmt.where(Unit.serial_number == serial_number.strip())
        if item_id is not None:
            stmt = stmt.where(Unit.item_id == item_id)
        if status is not None:
            stmt = stmt.where(Unit.status == UnitStatus(status))
        return list(self.db.execute(stmt).scalars())

    @retry_read
    def list_units_by_item(self, item_id: int):
        if self.db.get(Item, item_id) is None:
            raise NotFoundError(f"Item {item_id} not found")
        return list(self.db.execute(
            select(Unit).where(Unit.item_id == item_id).order_by(Unit.id)
        ).scalars())

    @retry_read
    def find_by_serial(self, serial: str) -> Unit:
        unit = self.db.execute(
            select(Unit).where(Unit.serial_number == (serial or "").strip())
        ).scalar_one_or_none()
        if unit is None:
            raise NotFoundError(f"No unit with serial number {serial}")
        return unit

    @retry_read
    def find_by_barcode(self, barcode: str) -> Unit:
        unit = self.db.execute(
            select(Unit).where(Unit.barcode == (barcode or "").strip())
        ).scalar_one_or_none()
        if unit is None:
            raise NotFoundError(f"No unit with barcode {barcode}")
        return unit

    def create_unit(self, data: UnitCreate) -> Unit:
        serial = (data.serial_number or "").strip()
        barcode = (data.barcode or "").strip()
        if not serial or not barcode:
            raise ValidationError("Serial number and barcode are required")
        status = UnitStatus(data.status)
        if status == UnitStatus.RENTED:
            raise ValidationError("A unit can only become RENTED through an allocation")

        with item_guard(self.db, data.item_id) as item:
            self._ensure_unique(serial, barcode)
            unit = Unit(
                item_id=item.id,
                serial_number=serial,
                barcode=barcode,
                status=status,
                location=data.location or item.location,
                warranty_expiry=data.warranty_expiry,
                notes=data.notes,
            )
            self.db.add(unit)
            refresh_item_counters(self.db, item)
            mark_item_touched(self.db, item.id)

        logger.info(
            f"Unit {serial} created",
            extra={'extra_fields': {'item_id': unit.item_id, 'unit_id': unit.id, 'status': status.value}}
        )
        return unit

    def update_unit_status(self, unit_id: int, new_status: UnitStatus) -> Unit:
        new_status = UnitStatus(new_status)
        item_id = self.get_unit(unit_id).item_id
        with item_guard(self.db, item_id) as item:
            unit = self._locked_unit(unit_id)
            previous = UnitStatus(unit.status)
            check_transition(previous, new_status, by_operator=True)
            unit.status = new_status
            refresh_item_counters(self.db, item)
            mark_item_touched(self.db, item.id)

        logger.info(
            f"Unit {unit.serial_number} status {previous.value} -> {new_status.value}",
            extra={'extra_fields': {'unit_id': unit.id, 'item_id': item_id}}
        )
        return unit

    def update_unit(self, unit_id: int, data: UnitUpdate) -> Unit:
        item_id = self.get_unit(unit_id).item_id
        with item_guard(self.db, item_id):
            unit = self._locked_unit(unit_id)
            for key, value in data.dict(exclude_unset=True).items():
                setattr(unit, key, value)
        return unit

    def delete_unit(self, unit_id: int) -> None:
        item_id = self.get_unit(unit_id).item_id
        with item_guard(self.db, item_id) as item:
            unit = self._locked_unit(unit_id)
            if unit.status == UnitStatus.RENTED:
                raise PreconditionFailedError(
                    f"Unit {unit.serial_number} is rented to {unit.consumer_ref}; release it before deleting"
                )
            serial = unit.serial_number
            self.db.delete(unit)
            refresh_item_counters(self.db, item)
            mark_item_touched(self.db, item.id)

        logger.info(f"Unit {serial} deleted", extra={'extra_fields': {'unit_id': unit_id, 'item_id': item_id}})

    def _locked_unit(self, unit_id: int) -> Unit:
        # Re-read under the item lock; a concurrent delete surfaces here
        unit = self.db.execute(
            select(Unit).where(Unit.id == unit_id).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if unit is None:
            raise NotFoundError(f"Unit {unit_id} not found")
        return unit

    def _ensure_unique(self, serial: str, barcode: str) -> None:
        clash = self.db.execute(
            select(Unit.serial_number, Unit.barcode).where(
                or_(Unit.serial_number == serial, Unit.barcode == barcode)
            )
        ).first()
        if clash is None:
            return
        if clash.serial_number == serial:
            raise ConflictError(f"Serial number {serial} already exists")
        raise ConflictError(f"Barcode {barcode} already exists")
