from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from urnext.config import settings


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _ensure_sqlite_dir(database_url: str):
    """Create the parent directory of a file-backed SQLite database."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=False
)

# Session factory
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_session() -> AsyncSession:
    """Dependency for getting database sessions."""
    async with async_session() as session:
        yield session


async def init_db(bind=None):
    """Initialize the database, creating all tables."""
    # Import models to register them
    from urnext.models import user, watchlist, invite  # noqa: F401

    bind = bind or engine
    _ensure_sqlite_dir(str(bind.url))

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
