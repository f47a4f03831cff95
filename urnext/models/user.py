from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from urnext.database import Base


class User(Base):
    """An account known from the identity provider."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), index=True)  # stored lower-cased
    display_name: Mapped[str] = mapped_column(String(200), default="")

    # Denormalized pointer, kept in step with watchlist_members
    active_watchlist_id: Mapped[Optional[str]] = mapped_column(
        String(32), ForeignKey("watchlists.id"), nullable=True
    )
    is_watchlist_creator: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
