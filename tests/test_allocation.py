import threading

import pytest
from sqlalchemy import event

from rental_stock.application.allocation import AllocationEngine
from rental_stock.application.item_ledger import ItemLedger
from rental_stock.application.reconciliation import ReconciliationEngine
from rental_stock.application.unit_store import UnitStore
from rental_stock.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from rental_stock.domain.models import Allocation, AllocationUnit, Unit
from rental_stock.domain.status import UnitStatus


def test_allocate_picks_lowest_ids(db, make_item):
    item = make_item(quantity=4)
    unit_ids = [unit.id for unit in UnitStore(db).list_units_by_item(item.id)]

    result = AllocationEngine(db).allocate(item.id, 2, "rental-100")

    assert [unit.id for unit in result.units] == unit_ids[:2]
    assert all(unit.status == UnitStatus.RENTED for unit in result.units)
    assert all(unit.consumer_ref == "rental-100" for unit in result.units)
    assert result.allocation.consumer_ref == "rental-100"
    assert [line.unit_id for line in result.allocation.lines] == unit_ids[:2]
    item = ItemLedger(db).get_item(item.id)
    assert (item.quantity_in_stock, item.quantity_rented_out) == (2, 2)


def test_allocate_insufficient_stock(db, make_item):
    item = make_item(quantity=2)

    with pytest.raises(InsufficientStockError) as exc:
        AllocationEngine(db).allocate(item.id, 3, "rental-1")

    assert exc.value.requested == 3
    assert exc.value.available == 2
    assert "only 2 available" in exc.value.message
    assert db.query(Unit).filter(Unit.status == UnitStatus.RENTED).count() == 0
    assert db.query(Allocation).count() == 0


def test_maintenance_units_are_not_allocatable(db, make_item):
    item = make_item(quantity=2)
    unit = UnitStore(db).list_units_by_item(item.id)[0]
    UnitStore(db).update_unit_status(unit.id, UnitStatus.MAINTENANCE)

    with pytest.raises(InsufficientStockError):
        AllocationEngine(db).allocate(item.id, 2, "rental-1")


@pytest.mark.parametrize("quantity,consumer_ref", [
    (0, "rental-1"),
    (-2, "rental-1"),
    (1, "   "),
    (1, "x" * 101),
])
def test_allocate_validation(db, make_item, quantity, consumer_ref):
    item = make_item(quantity=2)
    with pytest.raises(ValidationError):
        AllocationEngine(db).allocate(item.id, quantity, consumer_ref)


def test_allocate_unknown_item(db):
    with pytest.raises(NotFoundError):
        AllocationEngine(db).allocate(77, 1, "rental-1")


def test_release_returns_units_to_stock(db, make_item):
    item = make_item(quantity=3)
    engine = AllocationEngine(db)
    rented = engine.allocate(item.id, 2, "rental-5").units

    released = engine.release([unit.id for unit in rented])

    assert sorted(unit.id for unit in released) == sorted(unit.id for unit in rented)
    assert all(unit.status == UnitStatus.IN_STOCK for unit in released)
    assert all(unit.consumer_ref is None for unit in released)
    assert ItemLedger(db).get_item(item.id).quantity_in_stock == 3
    db.expire_all()
    allocation = db.query(Allocation).one()
    assert allocation.released_at is not None
    assert all(line.released_at is not None for line in allocation.lines)


def test_partial_release_keeps_allocation_open(db, make_item):
    item = make_item(quantity=3)
    engine = AllocationEngine(db)
    rented = engine.allocate(item.id, 3, "rental-6").units

    engine.release([rented[0].id])

    assert len(engine.list_allocations(consumer_ref="rental-6")) == 1
    open_lines = db.query(AllocationUnit).filter(AllocationUnit.released_at.is_(None)).count()
    assert open_lines == 2


def test_release_ignores_units_that_are_not_rented(db, make_item):
    item = make_item(quantity=2)
    unit = UnitStore(db).list_units_by_item(item.id)[0]

    assert AllocationEngine(db).release([unit.id]) == []
    assert UnitStore(db).get_unit(unit.id).status == UnitStatus.IN_STOCK


def test_release_unknown_unit_changes_nothing(db, make_item):
    item = make_item(quantity=2)
    engine = AllocationEngine(db)
    rented = engine.allocate(item.id, 1, "rental-1").units[0]

    with pytest.raises(NotFoundError):
        engine.release([rented.id, 9999])

    db.expire_all()
    assert db.get(Unit, rented.id).status == UnitStatus.RENTED


def test_release_consumer(db, make_item):
    cpu = make_item(quantity=2)
    mouse = make_item(category="Mouse", name="Logitech M90", model="M90", quantity=2)
    engine = AllocationEngine(db)
    engine.allocate(cpu.id, 2, "rental-9")
    engine.allocate(mouse.id, 1, "rental-9")
    engine.allocate(mouse.id, 1, "rental-10")

    released = engine.release_consumer("rental-9")

    assert len(released) == 3
    assert ItemLedger(db).available_quantity(cpu.id) == 2
    assert ItemLedger(db).available_quantity(mouse.id) == 1
    assert [a.consumer_ref for a in engine.list_allocations()] == ["rental-10"]


def test_list_allocations_history(db, make_item):
    item = make_item(quantity=2)
    engine = AllocationEngine(db)
    first = engine.allocate(item.id, 1, "rental-1")
    engine.allocate(item.id, 1, "rental-2")
    engine.release([unit.id for unit in first.units])

    assert [a.consumer_ref for a in engine.list_allocations(item_id=item.id)] == ["rental-2"]
    history = engine.list_allocations(item_id=item.id, active_only=False)
    assert [a.consumer_ref for a in history] == ["rental-1", "rental-2"]


def test_unit_can_be_allocated_again_after_release(db, make_item):
    item = make_item(quantity=1)
    engine = AllocationEngine(db)
    unit = engine.allocate(item.id, 1, "rental-1").units[0]
    engine.release([unit.id])

    again = engine.allocate(item.id, 1, "rental-2").units[0]

    assert again.id == unit.id
    assert db.query(AllocationUnit).filter(AllocationUnit.unit_id == unit.id).count() == 2


def test_concurrent_allocations_never_share_a_unit(session_factory, make_item):
    item = make_item(quantity=5)
    successes = []
    failures = []
    start = threading.Barrier(10)
    record = threading.Lock()

    def worker(index):
        session = session_factory()
        try:
            start.wait()
            result = AllocationEngine(session).allocate(item.id, 1, f"rental-{index}")
            with record:
                successes.append(result.units[0].id)
        except InsufficientStockError:
            with record:
                failures.append(index)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(successes) == 5
    assert len(set(successes)) == 5
    assert len(failures) == 5

    session = session_factory()
    try:
        assert session.query(Unit).filter(Unit.status == UnitStatus.RENTED).count() == 5
        assert ItemLedger(session).get_item(item.id).quantity_in_stock == 0
    finally:
        session.close()


def test_rental_lifecycle(db, make_item):
    item = make_item(quantity=5)
    units = UnitStore(db).list_units_by_item(item.id)
    assert len(units) == 5
    assert all(unit.status == UnitStatus.IN_STOCK for unit in units)

    ReconciliationEngine(db).reconcile(item.id, 8)
    assert len(UnitStore(db).list_units_by_item(item.id)) == 8

    engine = AllocationEngine(db)
    rental_x = engine.allocate(item.id, 8, "rental-X").units
    assert len(rental_x) == 8
    with pytest.raises(InsufficientStockError):
        engine.allocate(item.id, 1, "rental-Y")

    engine.release([unit.id for unit in rental_x[:3]])
    ReconciliationEngine(db).reconcile(item.id, 5)

    remaining = UnitStore(db).list_units_by_item(item.id)
    assert len(remaining) == 5
    assert all(unit.status == UnitStatus.RENTED for unit in remaining)
    assert {unit.id for unit in remaining} == {unit.id for unit in rental_x[3:]}
    item = ItemLedger(db).get_item(item.id)
    assert (item.quantity_in_stock, item.quantity_rented_out) == (0, 5)


def test_release_twice_is_harmless(db, make_item):
    item = make_item(quantity=2)
    engine = AllocationEngine(db)
    unit_ids = [unit.id for unit in engine.allocate(item.id, 2, "rental-1").units]

    assert len(engine.release(unit_ids)) == 2
    assert engine.release(unit_ids) == []
    assert ItemLedger(db).get_item(item.id).quantity_in_stock == 2


def test_reconcile_twice_changes_nothing_the_second_time(db, make_item):
    item = make_item(quantity=2)
    reconciliation = ReconciliationEngine(db)

    assert reconciliation.reconcile(item.id, 6).changed
    assert not reconciliation.reconcile(item.id, 6).changed
    assert len(UnitStore(db).list_units_by_item(item.id)) == 6


def test_counters_match_units_after_mixed_operations(db, make_item):
    item = make_item(quantity=6)
    engine = AllocationEngine(db)
    store = UnitStore(db)
    rented = engine.allocate(item.id, 3, "rental-1").units
    spare = store.list_units(item_id=item.id, status=UnitStatus.IN_STOCK)
    store.update_unit_status(spare[0].id, UnitStatus.MAINTENANCE)
    store.update_unit_status(spare[1].id, UnitStatus.RETIRED)
    engine.release([rented[0].id])
    ReconciliationEngine(db).reconcile(item.id, 7)

    db.expire_all()
    units = store.list_units_by_item(item.id)
    item = ItemLedger(db).get_item(item.id)
    counts = ItemLedger(db).status_counts(item.id)
    assert item.quantity_in_stock == counts["IN_STOCK"] == sum(u.status == UnitStatus.IN_STOCK for u in units)
    assert item.quantity_rented_out == counts["RENTED"] == 2
    assert sum(counts.values()) == len(units)


def test_unit_taken_between_select_and_claim_rolls_back(engine, db, make_item):
    item = make_item(quantity=3)
    taken_id = UnitStore(db).list_units_by_item(item.id)[0].id
    fired = []

    def take_unit_first(conn, cursor, statement, parameters, context, executemany):
        # Another writer moves the first selected unit out of stock just before the claim
        if statement.startswith("UPDATE units SET status") and not fired:
            fired.append(statement)
            cursor.execute("UPDATE units SET status = 'MAINTENANCE' WHERE id = ?", (taken_id,))

    event.listen(engine, "before_cursor_execute", take_unit_first)
    try:
        with pytest.raises(InsufficientStockError) as exc:
            AllocationEngine(db).allocate(item.id, 2, "rental-1")
    finally:
        event.remove(engine, "before_cursor_execute", take_unit_first)

    assert fired
    assert exc.value.available == 1
    db.expire_all()
    units = UnitStore(db).list_units_by_item(item.id)
    assert all(unit.status == UnitStatus.IN_STOCK for unit in units)
    assert all(unit.consumer_ref is None for unit in units)
    assert db.query(Allocation).count() == 0
    assert db.query(AllocationUnit).count() == 0
    assert ItemLedger(db).get_item(item.id).quantity_in_stock == 3
