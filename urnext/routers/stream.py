"""Server-Sent Events pushing full state whenever it changes."""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import json

from urnext.config import settings
from urnext.database import async_session, get_session
from urnext.errors import WatchlistError
from urnext.feed import SubscriptionSlot, feed, items_topic, user_topic, watchlist_topic
from urnext.identity import get_current_user
from urnext.models import User
from urnext.services import invites, watchlist as watchlists
from urnext.services.watchlist import serialize_item

router = APIRouter()


def format_sse(event: str, payload) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


KEEPALIVE = ": keepalive\n\n"


async def watchlist_frames(session: AsyncSession, watchlist_id: str, user_id: str, topic: Optional[str] = None) -> list[str]:
    """Frames for the watchlist document, its items, or both when topic is None."""
    frames = []
    if topic is None or topic == watchlist_topic(watchlist_id):
        snapshot = await watchlists.get_watchlist_snapshot(session, watchlist_id, user_id)
        frames.append(format_sse("watchlist", snapshot))
    if topic is None or topic == items_topic(watchlist_id):
        items = await watchlists.list_items(session, watchlist_id, user_id, "all")
        frames.append(format_sse("items", {
            "pending": [serialize_item(i) for i in items if not i.is_finished],
            "finished": [serialize_item(i) for i in items if i.is_finished]
        }))
    return frames


async def user_frame(session: AsyncSession, user_id: str) -> tuple[str, Optional[str]]:
    """Frame for the user's profile and the watchlist it points at."""
    user = await session.get(User, user_id)
    if user is None:
        return format_sse("user", None), None

    return format_sse("user", {
        "id": user.id,
        "active_watchlist_id": user.active_watchlist_id,
        "invites": await invites.list_account_invites(session, user)
    }), user.active_watchlist_id


async def watchlist_events(
    watchlist_id: str,
    user_id: str,
    session_factory=None,
    keepalive: Optional[float] = None
):
    """Stream one watchlist: initial state, then a frame per change."""
    session_factory = session_factory or async_session
    keepalive = keepalive or settings.stream_keepalive_seconds

    subscription = feed.subscribe(watchlist_topic(watchlist_id), items_topic(watchlist_id))
    try:
        async with session_factory() as session:
            for frame in await watchlist_frames(session, watchlist_id, user_id):
                yield frame

        while True:
            topic = await subscription.get(timeout=keepalive)
            if topic is None:
                yield KEEPALIVE
                continue

            async with session_factory() as session:
                for frame in await watchlist_frames(session, watchlist_id, user_id, topic):
                    yield frame

    except WatchlistError as e:
        yield format_sse("error", e.to_dict())
    finally:
        subscription.release()


async def member_events(
    user_id: str,
    session_factory=None,
    keepalive: Optional[float] = None
):
    """Stream the user's profile and whichever watchlist is active for them."""
    session_factory = session_factory or async_session
    keepalive = keepalive or settings.stream_keepalive_seconds

    def topics_for(active_id):
        if not active_id:
            return (user_topic(user_id),)
        return (user_topic(user_id), watchlist_topic(active_id), items_topic(active_id))

    slot = SubscriptionSlot(feed)
    try:
        # Follow the user before reading so no change falls between read and subscribe
        slot.replace(user_topic(user_id))
        async with session_factory() as session:
            frame, active_id = await user_frame(session, user_id)
            slot.replace(*topics_for(active_id))
            yield frame
            if active_id:
                for frame in await watchlist_frames(session, active_id, user_id):
                    yield frame

        while True:
            topic = await slot.current.get(timeout=keepalive)
            if topic is None:
                yield KEEPALIVE
                continue

            async with session_factory() as session:
                if topic == user_topic(user_id):
                    frame, new_active_id = await user_frame(session, user_id)
                    yield frame
                    if new_active_id != active_id:
                        active_id = new_active_id
                        slot.replace(*topics_for(active_id))
                        if active_id:
                            for frame in await watchlist_frames(session, active_id, user_id):
                                yield frame
                else:
                    for frame in await watchlist_frames(session, active_id, user_id, topic):
                        yield frame

    except WatchlistError as e:
        yield format_sse("error", e.to_dict())
    finally:
        slot.release()


def event_stream(events) -> StreamingResponse:
    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    )


@router.get("/watchlists/{watchlist_id}/events")
async def stream_watchlist(
    watchlist_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Subscribe to a watchlist's changes."""
    # Fail with a normal error response before the stream starts
    await watchlists.load_for_member(session, watchlist_id, user.id)
    return event_stream(watchlist_events(watchlist_id, user.id))


@router.get("/me/events")
async def stream_me(user: User = Depends(get_current_user)):
    """Subscribe to the user's profile and active watchlist."""
    return event_stream(member_events(user.id))
