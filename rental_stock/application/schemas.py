from pydantic import BaseModel
from typing import Optional, Dict
from datetime import date, datetime

from rental_stock.domain.status import UnitStatus

class CategoryCreate(BaseModel):
    name: str

class CategoryRead(BaseModel):
    id: int
    name: str
    item_count: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ItemCreate(BaseModel):
    # One of category_id / category_name; a new name creates the category
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    name: str
    model: str
    location: Optional[str] = None
    initial_quantity: int

class ItemUpdate(BaseModel):
    name: Optional[str] = None
    model: Optional[str] = None
    location: Optional[str] = None

class QuantityUpdate(BaseModel):
    quantity: int

class ItemRead(BaseModel):
    id: int
    category_id: int
    name: str
    model: str
    location: Optional[str] = None
    quantity_in_stock: int
    quantity_rented_out: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AvailabilityRead(BaseModel):
    item_id: int
    name: str
    model: str
    available_quantity: int

class UnitCreate(BaseModel):
    item_id: int
    serial_number: str
    barcode: str
    status: UnitStatus = UnitStatus.IN_STOCK
    location: Optional[str] = None
    warranty_expiry: Optional[date] = None
    notes: Optional[str] = None

class UnitUpdate(BaseModel):
    location: Optional[str] = None
    warranty_expiry: Optional[date] = None
    notes: Optional[str] = None

class UnitStatusUpdate(BaseModel):
    status: UnitStatus

class UnitRead(BaseModel):
    id: int
    item_id: int
    serial_number: str
    barcode: str
    status: UnitStatus
    location: Optional[str] = None
    warranty_expiry: Optional[date] = None
    notes: Optional[str] = None
    consumer_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AllocationCreate(BaseModel):
    item_id: int
    quantity: int
    consumer_ref: str

class AllocationLineRead(BaseModel):
    unit_id: Optional[int] = None
    serial_number: str
    released_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AllocationRead(BaseModel):
    id: int
    item_id: int
    consumer_ref: str
    created_at: datetime
    released_at: Optional[datetime] = None
    lines: list[AllocationLineRead] = []

    class Config:
        from_attributes = True

class AllocateResponse(BaseModel):
    allocation: AllocationRead
    units: list[UnitRead]

class ReleaseRequest(BaseModel):
    unit_ids: list[int]

class ReleaseResponse(BaseModel):
    released: list[UnitRead]

class UnitSnapshot(BaseModel):
    """Read-only projection shown after a QR/barcode scan."""
    serial_number: str
    name: str
    model: str
    location: Optional[str] = None
    warranty: Optional[date] = None
    status: UnitStatus
    notes: Optional[str] = None
    barcode: str

class StatsRead(BaseModel):
    categories: int
    items: int
    units: int
    units_by_status: Dict[str, int]
