from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from rental_stock.api.auth import require_principal
from rental_stock.application.allocation import AllocationEngine
from rental_stock.application.category_index import CategoryIndex
from rental_stock.application.item_ledger import ItemLedger
from rental_stock.application.lookup import LookupGateway
from rental_stock.application.schemas import (
    AllocateResponse,
    AllocationCreate,
    AllocationRead,
    AvailabilityRead,
    CategoryCreate,
    CategoryRead,
    ItemCreate,
    ItemRead,
    ItemUpdate,
    QuantityUpdate,
    ReleaseRequest,
    ReleaseResponse,
    StatsRead,
    UnitCreate,
    UnitRead,
    UnitSnapshot,
    UnitStatusUpdate,
    UnitUpdate,
)
from rental_stock.application.unit_store import UnitStore
from rental_stock.domain.errors import ValidationError
from rental_stock.domain.status import UnitStatus
from rental_stock.infrastructure.db import get_db

categories_router = APIRouter(prefix="/categories", tags=["categories"])
items_router = APIRouter(prefix="/items", tags=["items"])
units_router = APIRouter(prefix="/units", tags=["units"])
allocations_router = APIRouter(
    prefix="/allocations", tags=["allocations"], dependencies=[Depends(require_principal)]
)
lookup_router = APIRouter(prefix="/lookup", tags=["lookup"], dependencies=[Depends(require_principal)])
stats_router = APIRouter(tags=["stats"])

# Categories

@categories_router.get("/", response_model=list[CategoryRead])
def list_categories(db: Session = Depends(get_db)):
    return CategoryIndex(db).list_categories()

@categories_router.post("/", response_model=CategoryRead, status_code=201)
def create_category(payload: CategoryCreate, db: Session = Depends(get_db)):
    return CategoryIndex(db).create_category(payload.name)

@categories_router.get("/{category_id}", response_model=CategoryRead)
def get_category(category_id: int, db: Session = Depends(get_db)):
    return CategoryIndex(db).get_category(category_id)

@categories_router.put("/{category_id}", response_model=CategoryRead)
def rename_category(category_id: int, payload: CategoryCreate, db: Session = Depends(get_db)):
    return CategoryIndex(db).rename_category(category_id, payload.name)

@categories_router.delete("/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    confirm: bool = Query(False, description="Must be true: removes every item and unit in the category"),
    db: Session = Depends(get_db),
):
    if not confirm:
        raise ValidationError(
            "Deleting a category permanently removes all of its items and units; repeat with confirm=true"
        )
    CategoryIndex(db).delete_category(category_id)
    return None

# Items

@items_router.get("/", response_model=list[ItemRead])
def list_items(category_id: Optional[int] = Query(None), db: Session = Depends(get_db)):
    return ItemLedger(db).list_items(category_id)

@items_router.post("/", response_model=ItemRead, status_code=201)
def create_item(payload: ItemCreate, db: Session = Depends(get_db)):
    return ItemLedger(db).create_item(payload)

@items_router.get("/availability", response_model=list[AvailabilityRead])
def list_availability(category_id: Optional[int] = Query(None), db: Session = Depends(get_db)):
    """Live available quantity of every item, for item-selection screens."""
    return ItemLedger(db).availability(category_id)

@items_router.get("/{item_id}", response_model=ItemRead)
def get_item(item_id: int, db: Session = Depends(get_db)):
    return ItemLedger(db).get_item(item_id)

@items_router.put("/{item_id}", response_model=ItemRead)
def update_item(item_id: int, payload: ItemUpdate, db: Session = Depends(get_db)):
    return ItemLedger(db).update_item(item_id, payload)

@items_router.put("/{item_id}/quantity", response_model=ItemRead)
def set_item_quantity(item_id: int, payload: QuantityUpdate, db: Session = Depends(get_db)):
    return ItemLedger(db).set_declared_quantity(item_id, payload.quantity)

@items_router.delete("/{item_id}", status_code=204)
def delete_item(item_id: int, db: Session = Depends(get_db)):
    ItemLedger(db).delete_item(item_id)
    return None

@items_router.get("/{item_id}/availability", response_model=AvailabilityRead)
def get_item_availability(item_id: int, db: Session = Depends(get_db)):
    ledger = ItemLedger(db)
    item = ledger.get_item(item_id)
    return AvailabilityRead(
        item_id=item.id,
        name=item.name,
        model=item.model,
        available_quantity=ledger.cached_available_quantity(item_id),
    )

@items_router.get("/{item_id}/status-counts", response_model=dict[str, int])
def get_item_status_counts(item_id: int, db: Session = Depends(get_db)):
    return ItemLedger(db).status_counts(item_id)

# Units

@units_router.get("/", response_model=list[UnitRead])
def list_units(
    item_id: Optional[int] = Query(None),
    serial_number: Optional[str] = Query(None, max_length=64),
    status: Optional[UnitStatus] = Query(None),
    db: Session = Depends(get_db),
):
    store = UnitStore(db)
    if item_id is not None and status is None and not serial_number:
        return store.list_units_by_item(item_id)
    return store.list_units(item_id=item_id, status=status, serial_number=serial_number)

@units_router.post("/", response_model=UnitRead, status_code=201)
def create_unit(payload: UnitCreate, db: Session = Depends(get_db)):
    return UnitStore(db).create_unit(payload)

@units_router.get("/{unit_id}", response_model=UnitRead)
def get_unit(unit_id: int, db: Session = Depends(get_db)):
    return UnitStore(db).get_unit(unit_id)

@units_router.put("/{unit_id}", response_model=UnitRead)
def update_unit(unit_id: int, payload: UnitUpdate, db: Session = Depends(get_db)):
    return UnitStore(db).update_unit(unit_id, payload)

@units_router.put("/{unit_id}/status", response_model=UnitRead)
def update_unit_status(unit_id: int, payload: UnitStatusUpdate, db: Session = Depends(get_db)):
    return UnitStore(db).update_unit_status(unit_id, payload.status)

@units_router.delete("/{unit_id}", status_code=204)
def delete_unit(unit_id: int, db: Session = Depends(get_db)):
    UnitStore(db).delete_unit(unit_id)
    return None

# Allocations

@allocations_router.post("/", response_model=AllocateResponse, status_code=201)
def allocate(payload: AllocationCreate, db: Session = Depends(get_db)):
    result = AllocationEngine(db).allocate(payload.item_id, payload.quantity, payload.consumer_ref)
    return {"allocation": result.allocation, "units": result.units}

@allocations_router.get("/", response_model=list[AllocationRead])
def list_allocations(
    consumer_ref: Optional[str] = Query(None, max_length=100),
    item_id: Optional[int] = Query(None),
    active_only: bool = Query(True),
    db: Session = Depends(get_db),
):
    return AllocationEngine(db).list_allocations(consumer_ref, item_id, active_only)

@allocations_router.post("/release", response_model=ReleaseResponse)
def release_units(payload: ReleaseRequest, db: Session = Depends(get_db)):
    return {"released": AllocationEngine(db).release(payload.unit_ids)}

@allocations_router.post("/consumers/{consumer_ref}/release", response_model=ReleaseResponse)
def release_consumer(consumer_ref: str, db: Session = Depends(get_db)):
    return {"released": AllocationEngine(db).release_consumer(consumer_ref)}

# Lookup

@lookup_router.get("/serial/{serial_number}", response_model=UnitSnapshot)
def lookup_serial(serial_number: str, db: Session = Depends(get_db)):
    return LookupGateway(db).lookup(serial_number)

@lookup_router.get("/barcode/{barcode}", response_model=UnitSnapshot)
def lookup_barcode(barcode: str, db: Session = Depends(get_db)):
    return LookupGateway(db).lookup_barcode(barcode)

@stats_router.get("/stats", response_model=StatsRead)
def get_stats(db: Session = Depends(get_db)):
    return ItemLedger(db).stats()

routers = [
    categories_router,
    items_router,
    units_router,
    allocations_router,
    lookup_router,
    stats_router,
]
