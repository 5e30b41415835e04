import functools
import time
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker, Session

from rental_stock.core_settings import get_settings
from rental_stock.domain.errors import ConflictError
from rental_stock.domain.models import Base
from shared.core import get_logger

logger = get_logger(__name__)

def build_engine(database_url: str) -> Engine:
    """Engine for ``database_url``; SQLite gets FK enforcement and cross-thread use."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(database_url, echo=False, future=True, pool_pre_ping=True)

def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

settings = get_settings()
engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)

def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_models(bind: Engine = None):
    Base.metadata.create_all(bind or engine)

@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit on success, roll back everything on any error.

    Unique-key violations surface as ConflictError once the rollback is done.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning(f"Transaction rolled back on integrity error: {exc.orig}")
        raise ConflictError("Write rejected: a serial number, barcode or name is already in use") from exc
    except Exception:
        db.rollback()
        raise

def retry_read(method):
    """Retry an idempotent read on transient database errors.

    Only for service methods that do not write: the session is rolled back
    and the call repeated up to READ_RETRY_ATTEMPTS times with a growing delay.
    """
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        current = get_settings()
        attempts = max(1, current.READ_RETRY_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                return method(self, *args, **kwargs)
            except OperationalError as exc:
                self.db.rollback()
                if attempt >= attempts:
                    logger.error(f"{method.__qualname__} failed after {attempt} attempt(s): {exc}")
                    raise
                delay = current.READ_RETRY_DELAY_SECONDS * attempt
                logger.warning(
                    f"{method.__qualname__} hit a transient database error, retrying",
                    extra={'extra_fields': {'attempt': attempt, 'delay_seconds': delay}}
                )
                time.sleep(delay)
    return wrapper
