"""Turn-taking rules for a shared watchlist.

Members alternate per media kind: nobody adds (or promotes) two items of
the same kind in a row while the other member has not had a go. Movies
and shows keep separate turn state.
"""

from urnext.models import MediaKind, Watchlist


def turn_reset_due(pending_count: int) -> bool:
    """Whether the queue is small enough that turn order no longer applies.

    Counts pending items of both kinds together.
    """
    return pending_count <= 1


def _is_turn_of(watchlist: Watchlist, kind: MediaKind, actor_id: str) -> bool:
    last = watchlist.last_added_by(kind)
    return not last or last != actor_id


def can_add(watchlist: Watchlist, kind: MediaKind, actor_id: str, pending_count: int) -> bool:
    """Whether ``actor_id`` may add a pending item of ``kind``."""
    if pending_count == 0:
        return True
    return _is_turn_of(watchlist, kind, actor_id)


def can_promote(watchlist: Watchlist, kind: MediaKind, actor_id: str, pending_count: int) -> bool:
    """Whether ``actor_id`` may move an item of ``kind`` to now playing."""
    if turn_reset_due(pending_count):
        return True
    return _is_turn_of(watchlist, kind, actor_id)


def reset_turns(watchlist: Watchlist):
    watchlist.last_added_by_overall = None
    watchlist.last_added_by_movie = None
    watchlist.last_added_by_show = None
