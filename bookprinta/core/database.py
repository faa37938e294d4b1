# bookprinta/core/database.py
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from bookprinta.core.config import get_database_url


def _enable_sqlite_wal(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def build_engine(db_url: str, **engine_kwargs) -> AsyncEngine:
    # Configure engine based on database type
    if "sqlite" in db_url:
        engine = create_async_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 5},
            **engine_kwargs,
        )
        # Readers must not block the single writer that claims a payment
        event.listen(engine.sync_engine, "connect", _enable_sqlite_wal)
        return engine

    return create_async_engine(
        db_url,
        pool_pre_ping=True,
        pool_recycle=3600,
        **engine_kwargs,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine = build_engine(get_database_url())

SessionLocal = build_sessionmaker(engine)

class Base(DeclarativeBase):
    pass

async def get_db():
    async with SessionLocal() as session:
        yield session
