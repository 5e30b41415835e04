from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, Integer, ForeignKey, DateTime, Date, Text, Enum, Index, text
from datetime import datetime, date
from typing import Optional

from rental_stock.domain.status import UnitStatus

class Base(DeclarativeBase):
    pass

class Category(Base):
    __tablename__ = "categories"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    # Derived from the items table; rewritten in the transaction that adds or removes items
    item_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    items: Mapped[list["Item"]] = relationship(
        "Item", back_populates="category", cascade="all, delete-orphan", order_by="Item.id"
    )

class Item(Base):
    __tablename__ = "items"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    model: Mapped[str] = mapped_column(String(200))
    # Default location for units generated for this item
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    # Cached aggregates of unit statuses; the units table is the source of truth
    quantity_in_stock: Mapped[int] = mapped_column(Integer, default=0)
    quantity_rented_out: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, onupdate=datetime.utcnow)
    category: Mapped[Category] = relationship("Category", back_populates="items")
    units: Mapped[list["Unit"]] = relationship(
        "Unit", back_populates="item", cascade="all, delete-orphan", order_by="Unit.id"
    )
    allocations: Mapped[list["Allocation"]] = relationship(
        "Allocation", back_populates="item", cascade="all, delete-orphan"
    )

class Unit(Base):
    __tablename__ = "units"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="CASCADE"), index=True)
    serial_number: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    barcode: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    status: Mapped[UnitStatus] = mapped_column(
        Enum(UnitStatus, native_enum=False, length=20), default=UnitStatus.IN_STOCK, index=True
    )
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    warranty_expiry: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Consumer currently holding the unit while RENTED
    consumer_ref: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, onupdate=datetime.utcnow)
    item: Mapped[Item] = relationship("Item", back_populates="units")
    allocation_lines: Mapped[list["AllocationUnit"]] = relationship("AllocationUnit", back_populates="unit")

class Allocation(Base):
    __tablename__ = "allocations"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="CASCADE"), index=True)
    # Rental, sale order or service ticket reference owned by the caller
    consumer_ref: Mapped[str] = mapped_column(String(100), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    item: Mapped[Item] = relationship("Item", back_populates="allocations")
    lines: Mapped[list["AllocationUnit"]] = relationship(
        "AllocationUnit", back_populates="allocation", cascade="all, delete-orphan", order_by="AllocationUnit.id"
    )

class AllocationUnit(Base):
    __tablename__ = "allocation_units"
    __table_args__ = (
        # A unit is in at most one active allocation
        Index(
            "uq_allocation_units_active_unit",
            "unit_id",
            unique=True,
            sqlite_where=text("released_at IS NULL"),
            postgresql_where=text("released_at IS NULL"),
        ),
    )
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    allocation_id: Mapped[int] = mapped_column(ForeignKey("allocations.id", ondelete="CASCADE"), index=True)
    unit_id: Mapped[Optional[int]] = mapped_column(ForeignKey("units.id", ondelete="SET NULL"), nullable=True)
    # Snapshot kept after the unit itself is deleted
    serial_number: Mapped[str] = mapped_column(String(64))
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    allocation: Mapped[Allocation] = relationship("Allocation", back_populates="lines")
    unit: Mapped[Optional[Unit]] = relationship("Unit", back_populates="allocation_lines")
