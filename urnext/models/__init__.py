from urnext.models.user import User
from urnext.models.watchlist import MediaKind, Watchlist, WatchlistMember, WatchlistItem
from urnext.models.invite import AccountInvite, PendingInvite

__all__ = [
    "User",
    "MediaKind",
    "Watchlist",
    "WatchlistMember",
    "WatchlistItem",
    "AccountInvite",
    "PendingInvite"
]
