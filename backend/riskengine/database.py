"""Engine and session factory construction for the SQL store."""
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from riskengine.config import settings

# Applied to every new SQLite connection; finder sessions run side by side
SQLITE_PRAGMAS = ("journal_mode=WAL", "busy_timeout=5000", "foreign_keys=ON")


def _apply_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(f"PRAGMA {pragma}")
    cursor.close()


def build_engine(url: str | None = None, **engine_kwargs) -> AsyncEngine:
    """Async engine for ``url``; keyword arguments override the defaults."""
    url = url or settings.DATABASE_URL
    is_sqlite = make_url(url).get_backend_name() == "sqlite"

    options = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not is_sqlite and "poolclass" not in engine_kwargs:
        options.update(pool_size=5, max_overflow=10)
    options.update(engine_kwargs)

    engine = create_async_engine(url, **options)
    if is_sqlite:
        event.listen(engine.sync_engine, "connect", _apply_sqlite_pragmas)
    return engine


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
