from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from urnext.errors import (
    AlreadyPlaying, ConcurrentModification, InvalidRequest, NotFound, NothingPlaying,
    NotYourTurn, OriginalRecordMissing, PermissionDenied, StoreUnavailable
)
from urnext.feed import feed, items_topic, user_topic, watchlist_topic
from urnext.models import MediaKind, User, Watchlist, WatchlistItem, WatchlistMember
from urnext.models.watchlist import new_id
from urnext.schemas import MediaCandidate
from urnext.services.turns import can_add, can_promote, reset_turns, turn_reset_due

logger = logging.getLogger(__name__)


async def commit(session: AsyncSession, *topics: str):
    """Commit the operation's writes as one transaction, then notify subscribers."""
    try:
        await session.commit()
    except (StaleDataError, IntegrityError):
        # Another writer got there first
        await session.rollback()
        raise ConcurrentModification()
    except OperationalError as e:
        await session.rollback()
        logger.error(f"Database unavailable: {e}")
        raise StoreUnavailable()
    feed.publish(*topics)


def parse_kind(kind) -> MediaKind:
    try:
        return MediaKind(kind)
    except ValueError:
        raise InvalidRequest(f"Unknown media kind: {kind}")


async def get_member_ids(session: AsyncSession, watchlist_id: str) -> list[str]:
    result = await session.execute(
        select(WatchlistMember.user_id)
        .where(WatchlistMember.watchlist_id == watchlist_id)
        .order_by(WatchlistMember.joined_at, WatchlistMember.id)
    )
    return list(result.scalars().all())


async def load_for_member(session: AsyncSession, watchlist_id: str, user_id: str) -> Watchlist:
    """Get a watchlist the user belongs to."""
    watchlist = await session.get(Watchlist, watchlist_id)
    if not watchlist:
        raise NotFound("Watchlist not found")

    if user_id not in await get_member_ids(session, watchlist_id):
        raise PermissionDenied("You are not a member of this watchlist")

    return watchlist


async def count_pending(session: AsyncSession, watchlist_id: str) -> int:
    """Count pending items of both kinds."""
    result = await session.execute(
        select(func.count(WatchlistItem.id)).where(
            WatchlistItem.watchlist_id == watchlist_id,
            WatchlistItem.finished_at.is_(None)
        )
    )
    return result.scalar() or 0


def make_snapshot(item: WatchlistItem, promoted_by: str) -> dict:
    """Detached copy of a pending item for the now playing slot."""
    return {
        "source_item_id": item.id,
        "title": item.title,
        "poster_reference": item.poster_reference,
        "synopsis": item.synopsis,
        "kind": item.kind,
        "added_by": item.added_by,
        "added_at": item.added_at.isoformat(),
        "promoted_by": promoted_by,
        "promoted_at": datetime.now().isoformat()
    }


def serialize_item(item: WatchlistItem) -> dict:
    return {
        "id": item.id,
        "watchlist_id": item.watchlist_id,
        "title": item.title,
        "poster_reference": item.poster_reference,
        "synopsis": item.synopsis,
        "kind": item.kind,
        "added_by": item.added_by,
        "added_at": item.added_at.isoformat(),
        "rating": item.rating,
        "comment": item.comment,
        "finished_at": item.finished_at.isoformat() if item.finished_at else None
    }


async def create_watchlist(session: AsyncSession, user: User, name: str) -> Watchlist:
    """Create a watchlist with the user as its only member."""
    name = (name or "").strip()
    if not name:
        raise InvalidRequest("Watchlist name cannot be empty")

    watchlist = Watchlist(id=new_id(), name=name)
    session.add(watchlist)
    # Parent row first so the member row's foreign key resolves
    await session.flush()
    session.add(WatchlistMember(watchlist_id=watchlist.id, user_id=user.id))

    user.active_watchlist_id = watchlist.id
    user.is_watchlist_creator = True

    await commit(session, user_topic(user.id))
    logger.info(f"Created watchlist '{name}' ({watchlist.id}) for {user.id}")
    return watchlist


async def get_watchlist_snapshot(session: AsyncSession, watchlist_id: str, actor_id: str) -> dict:
    """Full current state of a watchlist as seen by one member."""
    watchlist = await load_for_member(session, watchlist_id, actor_id)
    member_ids = await get_member_ids(session, watchlist_id)
    pending = await count_pending(session, watchlist_id)

    result = await session.execute(select(User).where(User.id.in_(member_ids)))
    users = {u.id: u for u in result.scalars().all()}

    return {
        "id": watchlist.id,
        "name": watchlist.name,
        "created_at": watchlist.created_at.isoformat(),
        "revision": watchlist.revision,
        "members": [
            {
                "id": uid,
                "display_name": users[uid].display_name if uid in users else ""
            }
            for uid in member_ids
        ],
        "now_playing": {kind.value: watchlist.now_playing(kind) for kind in MediaKind},
        "last_added_by": {
            "overall": watchlist.last_added_by_overall,
            MediaKind.MOVIE.value: watchlist.last_added_by_movie,
            MediaKind.SHOW.value: watchlist.last_added_by_show
        },
        "pending_count": pending,
        "can_add": {
            kind.value: can_add(watchlist, kind, actor_id, pending) for kind in MediaKind
        },
        "can_promote": {
            kind.value: (
                watchlist.now_playing(kind) is None
                and can_promote(watchlist, kind, actor_id, pending)
            )
            for kind in MediaKind
        }
    }


async def list_items(
    session: AsyncSession,
    watchlist_id: str,
    actor_id: str,
    status: str = "pending"
) -> list[WatchlistItem]:
    """List pending, finished or all items of a watchlist."""
    await load_for_member(session, watchlist_id, actor_id)

    query = select(WatchlistItem).where(WatchlistItem.watchlist_id == watchlist_id)
    if status == "pending":
        query = query.where(WatchlistItem.finished_at.is_(None)).order_by(WatchlistItem.added_at)
    elif status == "finished":
        query = query.where(WatchlistItem.finished_at.is_not(None)).order_by(
            WatchlistItem.finished_at.desc()
        )
    elif status == "all":
        query = query.order_by(WatchlistItem.added_at)
    else:
        raise InvalidRequest(f"Unknown item status: {status}")

    result = await session.execute(query)
    return list(result.scalars().all())


async def add_item(
    session: AsyncSession,
    watchlist_id: str,
    actor_id: str,
    candidate: MediaCandidate
) -> WatchlistItem:
    """Queue a candidate if it is the actor's turn for its kind."""
    kind = parse_kind(candidate.kind)
    title = candidate.title.strip()
    if not title:
        raise InvalidRequest("Title cannot be empty")

    watchlist = await load_for_member(session, watchlist_id, actor_id)
    pending = await count_pending(session, watchlist_id)

    if not can_add(watchlist, kind, actor_id, pending):
        logger.warning(f"Rejected {kind.value} add by {actor_id} on {watchlist_id}: not their turn")
        raise NotYourTurn(f"It's not your turn to add a {kind.value}. Waiting for your partner.")

    item = WatchlistItem(
        id=new_id(),
        watchlist_id=watchlist_id,
        title=title,
        poster_reference=candidate.poster_reference,
        synopsis=candidate.synopsis,
        kind=kind.value,
        added_by=actor_id,
        added_at=datetime.now()
    )
    session.add(item)

    watchlist.last_added_by_overall = actor_id
    watchlist.set_last_added_by(kind, actor_id)

    await commit(session, watchlist_topic(watchlist_id), items_topic(watchlist_id))
    logger.info(f"{actor_id} added {kind.value} '{title}' to {watchlist_id}")
    return item


async def promote(
    session: AsyncSession,
    watchlist_id: str,
    item_id: str,
    kind,
    actor_id: str
) -> dict:
    """Move a pending item into the now playing slot of its kind."""
    kind = parse_kind(kind)
    watchlist = await load_for_member(session, watchlist_id, actor_id)

    if watchlist.now_playing(kind) is not None:
        raise AlreadyPlaying(f"A {kind.value} is already playing. Finish it or move it back first.")

    item = await session.get(WatchlistItem, item_id)
    if not item or item.watchlist_id != watchlist_id or item.is_finished:
        raise NotFound("Item not found")
    if item.kind != kind.value:
        raise InvalidRequest(f"Item is a {item.kind}, not a {kind.value}")

    pending = await count_pending(session, watchlist_id)
    if not can_promote(watchlist, kind, actor_id, pending):
        logger.warning(f"Rejected {kind.value} promotion by {actor_id} on {watchlist_id}: not their turn")
        raise NotYourTurn(f"It's not your turn to pick a {kind.value}. Let your partner choose next!")

    snapshot = make_snapshot(item, actor_id)
    await session.delete(item)
    watchlist.set_now_playing(kind, snapshot)
    # Turn continues from whoever proposed the item, not the promoter
    watchlist.set_last_added_by(kind, item.added_by)

    await commit(session, watchlist_topic(watchlist_id), items_topic(watchlist_id))
    logger.info(f"{actor_id} started playing '{item.title}' on {watchlist_id}")
    return snapshot


async def finish(
    session: AsyncSession,
    watchlist_id: str,
    kind,
    actor_id: str,
    rating: Optional[int] = None,
    comment: Optional[str] = None
) -> WatchlistItem:
    """Record the now playing item as finished and free the slot."""
    kind = parse_kind(kind)
    watchlist = await load_for_member(session, watchlist_id, actor_id)

    snapshot = watchlist.now_playing(kind)
    if snapshot is None:
        raise NothingPlaying(f"No {kind.value} is currently playing")

    title = snapshot.get("title")
    source_id = snapshot.get("source_item_id")
    if not title or not source_id or snapshot.get("kind") != kind.value:
        raise OriginalRecordMissing()

    result = await session.execute(
        select(WatchlistItem).where(
            WatchlistItem.id == source_id,
            WatchlistItem.watchlist_id == watchlist_id,
            WatchlistItem.title == title,
            WatchlistItem.kind == kind.value,
            WatchlistItem.finished_at.is_(None)
        )
    )
    record = result.scalar_one_or_none()

    if record is None:
        # Promotion removed the queue row; the snapshot carries its identity
        added_at = snapshot.get("added_at")
        record = WatchlistItem(
            id=source_id,
            watchlist_id=watchlist_id,
            title=title,
            poster_reference=snapshot.get("poster_reference") or "",
            synopsis=snapshot.get("synopsis") or "",
            kind=kind.value,
            added_by=snapshot.get("added_by") or actor_id,
            added_at=datetime.fromisoformat(added_at) if added_at else datetime.now()
        )
        session.add(record)

    record.finished_at = datetime.now()
    if rating is not None:
        record.rating = rating
    if comment is not None:
        record.comment = comment

    watchlist.set_now_playing(kind, None)
    watchlist.set_last_added_by(kind, None)

    await commit(session, watchlist_topic(watchlist_id), items_topic(watchlist_id))
    logger.info(f"{actor_id} finished '{title}' on {watchlist_id}")
    return record


async def move_back(session: AsyncSession, watchlist_id: str, kind, actor_id: str) -> WatchlistItem:
    """Put the now playing item back in the queue, credited to the actor."""
    kind = parse_kind(kind)
    watchlist = await load_for_member(session, watchlist_id, actor_id)

    snapshot = watchlist.now_playing(kind)
    if snapshot is None:
        raise NothingPlaying(f"No {kind.value} is currently playing")

    item = WatchlistItem(
        id=new_id(),
        watchlist_id=watchlist_id,
        title=snapshot.get("title") or "",
        poster_reference=snapshot.get("poster_reference") or "",
        synopsis=snapshot.get("synopsis") or "",
        kind=kind.value,
        added_by=actor_id,
        added_at=datetime.now()
    )
    session.add(item)

    watchlist.set_now_playing(kind, None)
    watchlist.last_added_by_overall = actor_id
    watchlist.set_last_added_by(kind, actor_id)

    await commit(session, watchlist_topic(watchlist_id), items_topic(watchlist_id))
    logger.info(f"{actor_id} moved '{item.title}' back to the queue of {watchlist_id}")
    return item


async def discard_now_playing(session: AsyncSession, watchlist_id: str, kind, actor_id: str):
    """Empty the now playing slot without keeping a record."""
    kind = parse_kind(kind)
    watchlist = await load_for_member(session, watchlist_id, actor_id)

    if watchlist.now_playing(kind) is None:
        raise NothingPlaying(f"No {kind.value} is currently playing")

    watchlist.set_now_playing(kind, None)
    watchlist.set_last_added_by(kind, None)

    await commit(session, watchlist_topic(watchlist_id))
    logger.info(f"{actor_id} cleared the {kind.value} slot of {watchlist_id}")


async def remove_item(session: AsyncSession, item_id: str, actor_id: str):
    """Delete a pending item; a nearly empty queue goes back to neutral turns."""
    item = await session.get(WatchlistItem, item_id)
    if not item or item.is_finished:
        raise NotFound("Item not found")

    watchlist = await load_for_member(session, item.watchlist_id, actor_id)
    if item.added_by != actor_id:
        raise PermissionDenied("Only the member who added an item can remove it")

    remaining = await count_pending(session, watchlist.id) - 1
    await session.delete(item)
    if turn_reset_due(remaining):
        reset_turns(watchlist)

    await commit(session, watchlist_topic(watchlist.id), items_topic(watchlist.id))
    logger.info(f"{actor_id} removed '{item.title}' from {watchlist.id}")


async def review_item(
    session: AsyncSession,
    item_id: str,
    actor_id: str,
    rating: Optional[int],
    comment: Optional[str]
) -> WatchlistItem:
    """Rate or comment on a finished item."""
    item = await session.get(WatchlistItem, item_id)
    if not item:
        raise NotFound("Item not found")

    await load_for_member(session, item.watchlist_id, actor_id)
    if not item.is_finished:
        raise InvalidRequest("Only finished items can be reviewed")
    if rating is not None and not 1 <= rating <= 5:
        raise InvalidRequest("Rating must be between 1 and 5")

    item.rating = rating
    item.comment = comment

    await commit(session, items_topic(item.watchlist_id))
    return item
