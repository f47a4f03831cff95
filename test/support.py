import tempfile
import unittest
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from urnext.database import init_db
from urnext.identity import Identity
from urnext.models import MediaKind, WatchlistMember
from urnext.schemas import MediaCandidate
from urnext.services.invites import sync_user
from urnext.services.watchlist import create_watchlist


def movie(title: str) -> MediaCandidate:
    return MediaCandidate(title=title, kind=MediaKind.MOVIE, poster_reference=f"/{title}.jpg")


def show(title: str) -> MediaCandidate:
    return MediaCandidate(title=title, kind=MediaKind.SHOW)


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Fresh SQLite file per test, plus a watchlist shared by users a and b."""

    async def asyncSetUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self.tmpdir.name) / "urnext.db"
        self.engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
        await init_db(self.engine)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        self.session = self.session_factory()

        self.alice = await sync_user(self.session, Identity("a", "alice@example.com", "Alice"))
        self.bob = await sync_user(self.session, Identity("b", "bob@example.com", "Bob"))
        self.watchlist = await create_watchlist(self.session, self.alice, "Date night")
        self.session.add(WatchlistMember(watchlist_id=self.watchlist.id, user_id=self.bob.id))
        await self.session.commit()

    async def asyncTearDown(self) -> None:
        await self.session.close()
        await self.engine.dispose()
        self.tmpdir.cleanup()
