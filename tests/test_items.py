import pytest

from rental_stock.application.allocation import AllocationEngine
from rental_stock.application.category_index import CategoryIndex
from rental_stock.application.item_ledger import ItemLedger
from rental_stock.application.schemas import ItemCreate, ItemUpdate
from rental_stock.application.unit_store import UnitStore
from rental_stock.domain.errors import NotFoundError, PreconditionFailedError, ValidationError
from rental_stock.domain.models import Category, Unit
from rental_stock.domain.status import UnitStatus


def test_create_item_provisions_units(db, make_item):
    item = make_item(name="Intel Core i7", quantity=5, location="Rack A")

    units = UnitStore(db).list_units_by_item(item.id)
    assert len(units) == 5
    assert all(unit.status == UnitStatus.IN_STOCK for unit in units)
    assert all(unit.serial_number.startswith("INT") for unit in units)
    assert all(unit.location == "Rack A" for unit in units)
    assert len({unit.barcode for unit in units}) == 5
    assert item.quantity_in_stock == 5
    assert item.quantity_rented_out == 0


def test_create_item_with_new_category_name_creates_it(db, make_item):
    item = make_item(category="Projectors")

    category = db.get(Category, item.category_id)
    assert category.name == "Projectors"
    assert category.item_count == 1


def test_create_item_reuses_existing_category(db, make_item):
    first = make_item(category="Monitor", name="Dell P2419H", model="P2419H")
    second = make_item(category="Monitor", name="LG 27UK850", model="27UK850")

    assert first.category_id == second.category_id
    assert db.get(Category, first.category_id).item_count == 2


def test_create_item_with_category_id(db):
    category = CategoryIndex(db).create_category("Keyboard")
    item = ItemLedger(db).create_item(ItemCreate(
        category_id=category.id, name="Logitech K120", model="K120", initial_quantity=2
    ))
    assert item.category_id == category.id


def test_create_item_unknown_category_id(db):
    with pytest.raises(NotFoundError):
        ItemLedger(db).create_item(ItemCreate(
            category_id=999, name="Logitech K120", model="K120", initial_quantity=2
        ))


@pytest.mark.parametrize("overrides", [
    {"initial_quantity": 0},
    {"initial_quantity": -3},
    {"name": "  "},
    {"model": ""},
    {"category_name": None},
])
def test_create_item_validation(db, overrides):
    payload = {"category_name": "CPU", "name": "Ryzen 5", "model": "5600X", "initial_quantity": 2}
    payload.update(overrides)
    with pytest.raises(ValidationError):
        ItemLedger(db).create_item(ItemCreate(**payload))
    assert db.query(Unit).count() == 0


def test_update_item_fields(db, make_item):
    item = make_item()
    updated = ItemLedger(db).update_item(item.id, ItemUpdate(location="Shelf 4", model="i7-13700"))
    assert updated.location == "Shelf 4"
    assert updated.model == "i7-13700"
    assert updated.name == "Intel Core i7"


def test_update_item_rejects_blank_name(db, make_item):
    item = make_item()
    with pytest.raises(ValidationError):
        ItemLedger(db).update_item(item.id, ItemUpdate(name=" "))


def test_set_declared_quantity(db, make_item):
    item = make_item(quantity=2)
    updated = ItemLedger(db).set_declared_quantity(item.id, 4)
    assert updated.quantity_in_stock == 4


def test_delete_item_removes_units(db, make_item):
    item = make_item(quantity=3)
    category_id = item.category_id
    ledger = ItemLedger(db)

    ledger.delete_item(item.id)

    assert db.query(Unit).count() == 0
    assert db.get(Category, category_id).item_count == 0
    with pytest.raises(NotFoundError):
        ledger.get_item(item.id)


def test_delete_item_with_rented_units_is_blocked(db, make_item):
    item = make_item(quantity=3)
    AllocationEngine(db).allocate(item.id, 1, "rental-7")

    with pytest.raises(PreconditionFailedError):
        ItemLedger(db).delete_item(item.id)
    assert db.query(Unit).filter(Unit.item_id == item.id).count() == 3


def test_delete_item_after_release_keeps_nothing(db, make_item):
    item = make_item(quantity=2)
    engine = AllocationEngine(db)
    result = engine.allocate(item.id, 2, "rental-8")
    engine.release([unit.id for unit in result.units])

    ItemLedger(db).delete_item(item.id)
    assert db.query(Unit).count() == 0


def test_available_quantity_counts_in_stock_units(db, make_item):
    item = make_item(quantity=4)
    store = UnitStore(db)
    unit = store.list_units_by_item(item.id)[0]
    store.update_unit_status(unit.id, UnitStatus.MAINTENANCE)
    AllocationEngine(db).allocate(item.id, 1, "rental-1")

    assert ItemLedger(db).available_quantity(item.id) == 2


def test_available_quantity_unknown_item(db):
    with pytest.raises(NotFoundError):
        ItemLedger(db).available_quantity(42)


def test_availability_lists_every_item(db, make_item):
    cpu = make_item(quantity=3)
    mouse = make_item(category="Mouse", name="Logitech M90", model="M90", quantity=2)
    AllocationEngine(db).allocate(mouse.id, 2, "rental-2")

    rows = {row.item_id: row.available_quantity for row in ItemLedger(db).availability()}
    assert rows == {cpu.id: 3, mouse.id: 0}

    only_mice = ItemLedger(db).availability(category_id=mouse.category_id)
    assert [row.item_id for row in only_mice] == [mouse.id]


def test_status_counts(db, make_item):
    item = make_item(quantity=4)
    AllocationEngine(db).allocate(item.id, 1, "rental-3")
    unit = UnitStore(db).list_units(item_id=item.id, status=UnitStatus.IN_STOCK)[0]
    UnitStore(db).update_unit_status(unit.id, UnitStatus.RETIRED)

    assert ItemLedger(db).status_counts(item.id) == {
        "IN_STOCK": 2,
        "RENTED": 1,
        "MAINTENANCE": 0,
        "RETIRED": 1,
    }


def test_stats(db, make_item):
    make_item(quantity=2)
    make_item(category="Mouse", name="Logitech M90", model="M90", quantity=1)

    stats = ItemLedger(db).stats()
    assert stats.categories == 2
    assert stats.items == 2
    assert stats.units == 3
    assert stats.units_by_status["IN_STOCK"] == 3
    assert stats.units_by_status["RENTED"] == 0
