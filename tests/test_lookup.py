from datetime import date

import pytest

from rental_stock.application.allocation import AllocationEngine
from rental_stock.application.lookup import LookupGateway
from rental_stock.application.schemas import UnitCreate
from rental_stock.application.unit_store import UnitStore
from rental_stock.domain.errors import NotFoundError
from rental_stock.domain.status import UnitStatus


def test_lookup_by_serial_returns_snapshot(db, make_item):
    item = make_item(name="Dell P2419H", model="P2419H", category="Monitor", location="Front shelf")
    UnitStore(db).create_unit(UnitCreate(
        item_id=item.id,
        serial_number="CN0D1234",
        barcode="500000000001",
        warranty_expiry=date(2026, 12, 31),
        notes="Dead pixel top left",
    ))

    snapshot = LookupGateway(db).lookup("CN0D1234")

    assert snapshot.serial_number == "CN0D1234"
    assert snapshot.name == "Dell P2419H"
    assert snapshot.model == "P2419H"
    assert snapshot.location == "Front shelf"
    assert snapshot.warranty == date(2026, 12, 31)
    assert snapshot.status == UnitStatus.IN_STOCK
    assert snapshot.notes == "Dead pixel top left"
    assert snapshot.barcode == "500000000001"


def test_lookup_reflects_rental_status(db, make_item):
    item = make_item(quantity=1)
    unit = AllocationEngine(db).allocate(item.id, 1, "rental-1").units[0]

    assert LookupGateway(db).lookup(unit.serial_number).status == UnitStatus.RENTED
    assert LookupGateway(db).lookup_barcode(unit.barcode).serial_number == unit.serial_number


def test_lookup_unknown_serial(db):
    with pytest.raises(NotFoundError) as exc:
        LookupGateway(db).lookup("NOPE-1")
    assert "NOPE-1" in exc.value.message


def test_lookup_unknown_barcode(db):
    with pytest.raises(NotFoundError):
        LookupGateway(db).lookup_barcode("000000000000")
