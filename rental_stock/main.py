"""
Rental Stock Service
Serialized stock tracking for a rental and sales business
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import subprocess
import os

from shared.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from rental_stock.api.errors import register_error_handlers
from rental_stock.api.routes import routers
from rental_stock.application.category_index import CategoryIndex
from rental_stock.application.item_ledger import ItemLedger
from rental_stock.core_settings import get_settings
from rental_stock.infrastructure.db import SessionLocal, engine, init_models

settings = get_settings()

SERVICE_NAME = settings.SERVICE_NAME
SERVICE_VERSION = settings.SERVICE_VERSION
SERVICE_DESCRIPTION = "Category, item and per-unit stock tracking with atomic allocation"

setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL
)

logger = get_logger(__name__)

def run_migrations() -> None:
    logger.info("Running database migrations")
    result = subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=os.path.join(os.path.dirname(__file__), ".."),
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        logger.warning(f"Migration output: {result.stderr}")
    else:
        logger.info("Database migrations completed")

def seed_categories() -> None:
    db = SessionLocal()
    try:
        created = CategoryIndex(db).seed_default_categories()
        if created:
            logger.info(f"Seeded {len(created)} default categories")
    finally:
        db.close()

def inventory_metrics() -> dict:
    db = SessionLocal()
    try:
        return ItemLedger(db).stats().model_dump()
    finally:
        db.close()

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    if settings.RUN_MIGRATIONS_ON_STARTUP:
        try:
            run_migrations()
        except OSError as e:
            logger.error(f"Migration error: {e}")

    try:
        init_models()
        logger.info("Database models initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    if settings.SEED_DEFAULT_CATEGORIES:
        seed_categories()

    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")
    engine.dispose()

app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

register_error_handlers(app)

health_service = ServiceHealth(
    SERVICE_NAME, engine, SERVICE_VERSION, metrics_provider=inventory_metrics
)
app.include_router(health_service.create_health_router())

for router in routers:
    app.include_router(router)

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }

@app.get("/info")
async def info():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "endpoints": {
            "categories": "/categories",
            "items": "/items",
            "units": "/units",
            "allocations": "/allocations",
            "lookup": "/lookup/serial/{serial_number}",
            "stats": "/stats",
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs"
        }
    }
