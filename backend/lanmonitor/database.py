"""Database setup and session management.

SQLite file in WAL mode, accessed through SQLAlchemy's async engine.
Set DATABASE_URL to point at a different file:
    sqlite+aiosqlite:////var/lib/lanmonitor/monitor.db
"""
import logging
import os

from sqlalchemy import event
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import AsyncAdaptedQueuePool

from .config import get_database_url

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


def create_sqlite_engine(url: str) -> AsyncEngine:
    """Create an async SQLite engine configured for concurrent access."""
    engine = create_async_engine(
        url,
        echo=False,
        future=True,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        connect_args={"timeout": 30},  # Wait up to 30 seconds for locks
    )

    # Enable WAL mode and busy timeout on each SQLite connection
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """Configure SQLite for concurrent readers and a single writer."""
        cursor = dbapi_connection.cursor()
        # WAL mode allows concurrent reads during writes
        cursor.execute("PRAGMA journal_mode=WAL")
        # Wait up to 30 seconds for locks before failing
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to `engine`."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


_database_url = get_database_url()

engine = create_sqlite_engine(_database_url)
async_session = create_session_factory(engine)


def _ensure_parent_dir(url: str):
    """Create the directory holding the SQLite file, if any."""
    database = make_url(url).database
    if database and database != ":memory:":
        directory = os.path.dirname(os.path.abspath(database))
        os.makedirs(directory, exist_ok=True)


async def init_db(db_engine: AsyncEngine = engine):
    """Initialize database - ensure the data directory exists and create tables."""
    # Register the tables on Base.metadata
    from . import models  # noqa: F401

    _ensure_parent_dir(str(db_engine.url))

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready at {db_engine.url.database}")


async def close_db(db_engine: AsyncEngine = engine):
    """Close database connections."""
    await db_engine.dispose()
