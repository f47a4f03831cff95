from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from urnext.database import Base
from urnext.models.watchlist import new_id


class AccountInvite(Base):
    """An invitation addressed to a user who already has an account."""

    __tablename__ = "account_invites"
    __table_args__ = (UniqueConstraint("user_id", "watchlist_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), ForeignKey("users.id"), index=True)
    watchlist_id: Mapped[str] = mapped_column(String(32), ForeignKey("watchlists.id"))
    invited_by: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)


class PendingInvite(Base):
    """An invitation to an email address with no account yet."""

    __tablename__ = "pending_invites"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(320), index=True)
    watchlist_id: Mapped[str] = mapped_column(String(32), ForeignKey("watchlists.id"))
    watchlist_name: Mapped[str] = mapped_column(String(200))
    invited_by: Mapped[str] = mapped_column(String(128))
    invited_by_name: Mapped[str] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    email_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    email_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
