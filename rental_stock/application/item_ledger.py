from typing import Dict, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from rental_stock.application.cascade import ensure_nothing_rented, purge_item
from rental_stock.application.category_index import CategoryIndex
from rental_stock.application.counters import (
    count_available,
    count_by_status,
    refresh_category_count,
)
from rental_stock.application.reconciliation import ReconciliationEngine, validate_quantity
from rental_stock.application.schemas import AvailabilityRead, ItemCreate, ItemUpdate, StatsRead
from rental_stock.domain.errors import NotFoundError, ValidationError
from rental_stock.domain.models import Category, Item, Unit
from rental_stock.domain.status import UnitStatus
from rental_stock.infrastructure.cache import get_availability_cache, mark_item_touched
from rental_stock.infrastructure.db import retry_read, transaction
from rental_stock.infrastructure.locking import item_guard
from shared.core import get_logger

logger = get_logger(__name__)

def _required(value: Optional[str], field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field} is required")
    return cleaned

class ItemLedger:
    """Items and their cached stock counters.

    The counters on ``Item`` are rewritten from the units table in every
    transaction that touches units; ``available_quantity`` ignores them and
    counts units directly.
    """

    def __init__(self, db: Session):
        self.db = db
        self.reconciliation = ReconciliationEngine(db)

    @retry_read
    def get_item(self, item_id: int) -> Item:
        item = self.db.get(Item, item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        return item

    @retry_read
    def list_items(self, category_id: Optional[int] = None):
        stmt = select(Item).order_by(Item.id)
        if category_id is not None:
            stmt = stmt.where(Item.category_id == category_id)
        return list(self.db.execute(stmt).scalars())

    def create_item(self, data: ItemCreate) -> Item:
        name = _required(data.name, "Item name")
        model = _required(data.model, "Item model")
        validate_quantity(data.initial_quantity, allow_zero=False)
        if data.category_id is None and not (data.category_name or "").strip():
            raise ValidationError("A category is required")

        if data.category_id is None:
            # Committed on its own so concurrent creators of one new category share a row
            category_id = CategoryIndex(self.db).get_or_create(data.category_name).id
        else:
            category_id = data.category_id

        with transaction(self.db):
            category = self.db.get(Category, category_id)
            if category is None:
                raise NotFoundError(f"Category {category_id} not found")
            item = Item(
                category_id=category.id,
                name=name,
                model=model,
                location=(data.location or "").strip() or None,
                quantity_in_stock=0,
                quantity_rented_out=0,
            )
            self.db.add(item)
            self.db.flush()
            # The uncommitted row is private to this transaction, no lock needed
            self.reconciliation.apply(item, data.initial_quantity)
            refresh_category_count(self.db, category)

        logger.info(
            f"Item {name} created with {data.initial_quantity} units",
            extra={'extra_fields': {'item_id': item.id, 'category_id': category.id}}
        )
        return item

    def update_item(self, item_id: int, data: ItemUpdate) -> Item:
        changes = data.dict(exclude_unset=True)
        for field in ("name", "model"):
            if field in changes:
                changes[field] = _required(changes[field], f"Item {field}")
        with item_guard(self.db, item_id) as item:
            for key, value in changes.items():
                setattr(item, key, value)
        return item

    def set_declared_quantity(self, item_id: int, new_quantity: int) -> Item:
        return self.reconciliation.reconcile(item_id, new_quantity).item

    def delete_item(self, item_id: int) -> None:
        self.get_item(item_id)
        with item_guard(self.db, item_id) as item:
            ensure_nothing_rented(self.db, [item.id], f"item {item.name}")
            category = self.db.get(Category, item.category_id)
            name = item.name
            units_removed = purge_item(self.db, item)
            mark_item_touched(self.db, item_id)
            refresh_category_count(self.db, category)

        logger.warning(
            f"Item {name} deleted with its units",
            extra={'extra_fields': {'item_id': item_id, 'units_removed': units_removed}}
        )

    @retry_read
    def available_quantity(self, item_id: int) -> int:
        if self.db.get(Item, item_id) is None:
            raise NotFoundError(f"Item {item_id} not found")
        return count_available(self.db, item_id)

    def cached_available_quantity(self, item_id: int) -> int:
        """Availability for item-selection screens, served from the commit-invalidated cache."""
        return get_availability_cache().get_or_load(item_id, self.available_quantity)

    @retry_read
    def availability(self, category_id: Optional[int] = None) -> list:
        in_stock = func.count(case((Unit.status == UnitStatus.IN_STOCK, Unit.id)))
        stmt = (
            select(Item.id, Item.name, Item.model, in_stock)
            .outerjoin(Unit, Unit.item_id == Item.id)
            .group_by(Item.id, Item.name, Item.model)
            .order_by(Item.id)
        )
        if category_id is not None:
            stmt = stmt.where(Item.category_id == category_id)
        return [
            AvailabilityRead(item_id=row[0], name=row[1], model=row[2], available_quantity=row[3])
            for row in self.db.execute(stmt).all()
        ]

    @retry_read
    def status_counts(self, item_id: int) -> Dict[str, int]:
        if self.db.get(Item, item_id) is None:
            raise NotFoundError(f"Item {item_id} not found")
        return {status.value: count for status, count in count_by_status(self.db, item_id).items()}

    @retry_read
    def stats(self) -> StatsRead:
        rows = self.db.execute(select(Unit.status, func.count(Unit.id)).group_by(Unit.status)).all()
        by_status = {status.value: 0 for status in UnitStatus}
        for status, count in rows:
            by_status[UnitStatus(status).value] = count
        return StatsRead(
            categories=self.db.execute(select(func.count(Category.id))).scalar_one(),
            items=self.db.execute(select(func.count(Item.id))).scalar_one(),
            units=sum(by_status.values()),
            units_by_status=by_status,
        )
