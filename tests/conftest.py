import os
import tempfile

# Settings are read once at import time; point them at a throwaway database first
_SERVICE_DB_DIR = tempfile.mkdtemp(prefix="rental-stock-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_SERVICE_DB_DIR, 'service.db')}"
os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["READ_RETRY_DELAY_SECONDS"] = "0"
os.environ.pop("REDIS_URL", None)

import pytest
from fastapi.testclient import TestClient

from rental_stock.api.auth import create_access_token
from rental_stock.application.item_ledger import ItemLedger
from rental_stock.application.schemas import ItemCreate
from rental_stock.infrastructure.cache import get_availability_cache
from rental_stock.infrastructure.db import build_engine, build_session_factory, get_db, init_models
from rental_stock.main import app

# Health and metrics endpoints use the module-level engine
init_models()


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'stock.db'}")
    init_models(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clear_availability_cache():
    get_availability_cache().clear()
    yield
    get_availability_cache().clear()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {create_access_token('front-desk')}"}


@pytest.fixture
def make_item(db):
    """Create an item through the ledger, the way the item form does."""
    def _make_item(name="Intel Core i7", model="i7-12700", quantity=5, category="CPU", location=None):
        return ItemLedger(db).create_item(ItemCreate(
            category_name=category,
            name=name,
            model=model,
            location=location,
            initial_quantity=quantity,
        ))
    return _make_item
