import logging
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from medtrack.config import DATABASE_URL
from medtrack.errors import (
    MedtrackError, DuplicateIdentity, MissingRequiredField, ReferenceConflict, PersistenceFailure
)

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


engine = create_async_engine(DATABASE_URL, echo=False, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


def enable_sqlite_foreign_keys(async_engine) -> None:
    """SQLite ignores FOREIGN KEY / ON DELETE CASCADE unless asked per connection."""
    if async_engine.dialect.name != "sqlite":
        return

    @event.listens_for(async_engine.sync_engine, "connect")
    def _fk_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


enable_sqlite_foreign_keys(engine)


async def get_db():
    async with SessionLocal() as session:
        yield session


# PostgreSQL SQLSTATE codes, SQLite message fragments
_UNIQUE = ("23505", "unique constraint", "duplicate key")
_NOT_NULL = ("23502", "not null constraint", "null value in column")
_FOREIGN_KEY = ("23503", "foreign key constraint")


def translate_integrity_error(exc: IntegrityError) -> MedtrackError:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None) or ""
    text = str(orig).lower()

    def matches(markers):
        return code == markers[0] or any(m in text for m in markers[1:])

    if matches(_UNIQUE):
        return DuplicateIdentity()
    if matches(_NOT_NULL):
        column = getattr(orig, "column_name", None)
        if column:
            return MissingRequiredField(f"Field {column} must not be empty.")
        return MissingRequiredField()
    if matches(_FOREIGN_KEY):
        return ReferenceConflict()
    return PersistenceFailure()


@asynccontextmanager
async def unit_of_work(db: AsyncSession):
    """
    Commit everything done inside the block, or nothing.

    Store errors leave the block as MedtrackError subclasses; service errors
    raised inside the block roll back and pass through unchanged.
    """
    try:
        yield db
        await db.commit()
    except MedtrackError:
        await db.rollback()
        raise
    except IntegrityError as e:
        await db.rollback()
        raise translate_integrity_error(e) from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Unexpected store failure")
        raise PersistenceFailure() from e


def dialect_name(db: AsyncSession) -> str:
    return db.get_bind().dialect.name
