from typing import AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from config.settings import settings, IS_PRODUCTION

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./sql_app.db"

# Production requires Postgres
if IS_PRODUCTION:
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL must be set in production. SQLite is not allowed in production.")
    if "sqlite" in settings.database_url.lower():
        raise RuntimeError("SQLite is forbidden in production. Use a PostgreSQL DATABASE_URL.")


def _async_database_url(url: str) -> str:
    """Hosted Postgres URLs come without a driver (or as postgres://); pin asyncpg."""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def enable_sqlite_savepoints(async_engine) -> None:
    """
    Let the engine emit BEGIN itself so SAVEPOINTs nest inside the session's
    transaction; the sqlite3 driver's implicit transactions do not.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


DATABASE_URL = _async_database_url(settings.database_url or DEFAULT_DATABASE_URL)

if DATABASE_URL.startswith("sqlite"):
    engine_options = {"connect_args": {"check_same_thread": False}}
else:
    # Recycle connections the host closed while idle
    engine_options = {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}

engine = create_async_engine(DATABASE_URL, echo=False, **engine_options)
if DATABASE_URL.startswith("sqlite"):
    enable_sqlite_savepoints(engine)

Base = declarative_base()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db():
    """
    Create the users, subscriptions and user_trials tables if missing.
    Called on application startup.
    """
    import database_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db():
    await engine.dispose()


async def check_db() -> bool:
    """Round-trip a trivial query; used by the health endpoint."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session. Committed when the handler returns normally and
    rolled back if it raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
