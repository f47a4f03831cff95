import enum
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import String, Integer, DateTime, Text, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from urnext.database import Base


def new_id() -> str:
    return uuid4().hex


class MediaKind(str, enum.Enum):
    """Media category; turn state and now playing are tracked per kind."""

    MOVIE = "movie"
    SHOW = "show"


class Watchlist(Base):
    """A shared queue owned by one or two members."""

    __tablename__ = "watchlists"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    # Detached copies of the promoted items, NULL when nothing is playing
    now_playing_movie: Mapped[Optional[dict]] = mapped_column(JSON(none_as_null=True), nullable=True)
    now_playing_show: Mapped[Optional[dict]] = mapped_column(JSON(none_as_null=True), nullable=True)

    last_added_by_overall: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_added_by_movie: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_added_by_show: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Every UPDATE is guarded by the revision it was read at
    revision: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": revision}

    def now_playing(self, kind: MediaKind) -> Optional[dict]:
        if kind == MediaKind.MOVIE:
            return self.now_playing_movie
        return self.now_playing_show

    def set_now_playing(self, kind: MediaKind, snapshot: Optional[dict]):
        if kind == MediaKind.MOVIE:
            self.now_playing_movie = snapshot
        else:
            self.now_playing_show = snapshot

    def last_added_by(self, kind: MediaKind) -> Optional[str]:
        if kind == MediaKind.MOVIE:
            return self.last_added_by_movie
        return self.last_added_by_show

    def set_last_added_by(self, kind: MediaKind, user_id: Optional[str]):
        if kind == MediaKind.MOVIE:
            self.last_added_by_movie = user_id
        else:
            self.last_added_by_show = user_id


class WatchlistMember(Base):
    """Membership of a user in a watchlist."""

    __tablename__ = "watchlist_members"
    __table_args__ = (UniqueConstraint("watchlist_id", "user_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    watchlist_id: Mapped[str] = mapped_column(String(32), ForeignKey("watchlists.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(128), ForeignKey("users.id"))
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)


class WatchlistItem(Base):
    """A queued candidate, or a finished historical record once finished_at is set."""

    __tablename__ = "watchlist_items"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    watchlist_id: Mapped[str] = mapped_column(String(32), ForeignKey("watchlists.id"), index=True)

    title: Mapped[str] = mapped_column(String(500))
    poster_reference: Mapped[str] = mapped_column(String(500), default="")
    synopsis: Mapped[str] = mapped_column(Text, default="")
    kind: Mapped[str] = mapped_column(String(10))

    added_by: Mapped[str] = mapped_column(String(128))
    added_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None
