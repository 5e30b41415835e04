from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_stock.application.cascade import ensure_nothing_rented, purge_item
from rental_stock.application.counters import refresh_category_count
from rental_stock.domain.errors import ConflictError, NotFoundError, ValidationError
from rental_stock.domain.models import Category, Item
from rental_stock.infrastructure.cache import mark_item_touched
from rental_stock.infrastructure.db import retry_read, transaction
from rental_stock.infrastructure.locking import items_guard
from shared.core import get_logger

logger = get_logger(__name__)

DEFAULT_CATEGORIES = [
    "CPU",
    "Monitor",
    "Keyboard",
    "Mouse",
    "Cables",
    "Networking Devices",
    "Biometric Devices",
]

# Attempts at locking a category's items while items are being added to it
_DELETE_ATTEMPTS = 5

def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Category name is required")
    return cleaned

class CategoryIndex:
    def __init__(self, db: Session):
        self.db = db

    @retry_read
    def list_categories(self):
        return list(self.db.execute(select(Category).order_by(Category.id)).scalars())

    @retry_read
    def get_category(self, category_id: int) -> Category:
        category = self.db.get(Category, category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    def create_category(self, name: str) -> Category:
        name = _clean_name(name)
        with transaction(self.db):
            category = self._insert(name)
        logger.info(f"Category {name} created", extra={'extra_fields': {'category_id': category.id}})
        return category

    def get_or_create(self, name: str) -> Category:
        """Category named ``name``, created if missing.

        A concurrent caller may create the same name between the lookup and the
        insert; the unique name then rejects ours and the winner's row is returned.
        """
        name = _clean_name(name)
        category = self._find(name)
        if category is not None:
            return category
        try:
            with transaction(self.db):
                category = self._insert(name)
        except ConflictError:
            category = self._find(name)
            if category is None:
                raise
            return category
        logger.info(f"Category {name} created", extra={'extra_fields': {'category_id': category.id}})
        return category

    def rename_category(self, category_id: int, name: str) -> Category:
        name = _clean_name(name)
        with transaction(self.db):
            category = self.get_category(category_id)
            if category.name != name:
                self._ensure_name_free(name)
                category.name = name
        return category

    def delete_category(self, category_id: int) -> int:
        """Delete a category with all its items and units. Returns the number of items removed."""
        for _ in range(_DELETE_ATTEMPTS):
            self.get_category(category_id)
            item_ids = self._item_ids(category_id)
            with items_guard(self.db, item_ids) as items:
                category = self.db.execute(
                    select(Category).where(Category.id == category_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
                if category is None:
                    raise NotFoundError(f"Category {category_id} not found")
                if set(self._item_ids(category_id)) != set(item_ids):
                    # An item was added meanwhile; lock the new set
                    continue
                ensure_nothing_rented(self.db, item_ids, f"category {category.name}")
                name = category.name
                units_removed = 0
                for item in items:
                    units_removed += purge_item(self.db, item)
                    mark_item_touched(self.db, item.id)
                self.db.expire(category, ["items"])
                self.db.delete(category)

            logger.warning(
                f"Category {name} deleted with its items and units",
                extra={'extra_fields': {
                    'category_id': category_id,
                    'items_removed': len(item_ids),
                    'units_removed': units_removed,
                }}
            )
            return len(item_ids)
        raise ConflictError(f"Category {category_id} kept changing during deletion; try again")

    def refresh_item_count(self, category_id: int) -> Category:
        with transaction(self.db):
            category = self.get_category(category_id)
            refresh_category_count(self.db, category)
        return category

    def seed_default_categories(self) -> list:
        """Insert the default categories when the table is empty."""
        with transaction(self.db):
            if self.db.execute(select(Category.id).limit(1)).first() is not None:
                return []
            created = [self._insert(name) for name in DEFAULT_CATEGORIES]
        logger.info("Default categories seeded", extra={'extra_fields': {'count': len(created)}})
        return created

    def _item_ids(self, category_id: int) -> list:
        return list(self.db.execute(
            select(Item.id).where(Item.category_id == category_id).order_by(Item.id)
        ).scalars())

    def _find(self, name: str):
        return self.db.execute(select(Category).where(Category.name == name)).scalar_one_or_none()

    def _insert(self, name: str) -> Category:
        self._ensure_name_free(name)
        category = Category(name=name, item_count=0)
        self.db.add(category)
        self.db.flush()
        return category

    def _ensure_name_free(self, name: str) -> None:
        if self.db.execute(select(Category.id).where(Category.name == name)).first() is not None:
            raise ConflictError(f"Category {name} already exists")
