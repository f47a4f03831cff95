from fastapi import APIRouter, Depends, Query
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import asyncio
import logging

from urnext.config import settings
from urnext.database import get_session
from urnext.errors import ServiceNotConfigured, Transient
from urnext.identity import get_current_user
from urnext.models import MediaKind, User
from urnext.schemas import (
    AcceptInviteRequest, FinishRequest, InviteRequest, MediaCandidate,
    PromoteRequest, ReviewRequest, WatchlistCreate
)
from urnext.services import invites, watchlist as watchlists
from urnext.services.watchlist import serialize_item

logger = logging.getLogger(__name__)

router = APIRouter()

# Strong references to in-flight email tasks
_email_tasks: set[asyncio.Task] = set()


def schedule_invite_email(invite_id: str):
    """Fire the invite email without holding up the response."""
    from urnext.services.dispatcher import dispatch_invite, get_mailer
    from urnext.database import async_session

    mailer = get_mailer()
    if not mailer:
        logger.warning(f"SendGrid not configured, invite {invite_id} left for the sweep")
        return

    async def send():
        async with async_session() as session:
            try:
                await dispatch_invite(session, invite_id, mailer)
            except Transient as e:
                logger.error(f"Invite {invite_id} not delivered, will retry on sweep: {e.detail}")

    task = asyncio.create_task(send())
    _email_tasks.add(task)
    task.add_done_callback(_email_tasks.discard)


def invite_response(outcome) -> dict:
    return {
        "email": outcome.email,
        "existing_account": outcome.existing_account,
        "pending_invite_id": outcome.pending_invite_id
    }


@router.get("/me")
async def get_me(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Current user profile and invitations."""
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "active_watchlist_id": user.active_watchlist_id,
        "is_watchlist_creator": user.is_watchlist_creator,
        "invites": await invites.list_account_invites(session, user)
    }


@router.post("/watchlists", status_code=201)
async def create_watchlist(
    body: WatchlistCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Create a watchlist, optionally inviting a partner straight away."""
    # Reject a bad partner address before anything is written
    if body.partner_email:
        invites.check_invitee(user, body.partner_email)

    watchlist = await watchlists.create_watchlist(session, user, body.name)

    response = {"id": watchlist.id, "name": watchlist.name, "invite": None}
    if body.partner_email:
        outcome = await invites.invite(session, watchlist.id, user, body.partner_email)
        if outcome.pending_invite_id:
            schedule_invite_email(outcome.pending_invite_id)
        response["invite"] = invite_response(outcome)

    return response


@router.get("/watchlists/{watchlist_id}")
async def get_watchlist(
    watchlist_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    return await watchlists.get_watchlist_snapshot(session, watchlist_id, user.id)


@router.get("/watchlists/{watchlist_id}/items")
async def get_items(
    watchlist_id: str,
    status: str = Query("pending", pattern="^(pending|finished|all)$"),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """List queued or finished items."""
    items = await watchlists.list_items(session, watchlist_id, user.id, status)
    return {
        "items": [serialize_item(item) for item in items],
        "total_count": len(items)
    }


@router.post("/watchlists/{watchlist_id}/items", status_code=201)
async def add_item(
    watchlist_id: str,
    body: MediaCandidate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    item = await watchlists.add_item(session, watchlist_id, user.id, body)
    return serialize_item(item)


@router.delete("/items/{item_id}", status_code=204)
async def remove_item(
    item_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    await watchlists.remove_item(session, item_id, user.id)


@router.patch("/items/{item_id}/review")
async def review_item(
    item_id: str,
    body: ReviewRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Rate or comment on a finished item."""
    item = await watchlists.review_item(session, item_id, user.id, body.rating, body.comment)
    return serialize_item(item)


@router.post("/watchlists/{watchlist_id}/now-playing/{kind}")
async def promote(
    watchlist_id: str,
    kind: MediaKind,
    body: PromoteRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Move a queued item to now playing."""
    snapshot = await watchlists.promote(session, watchlist_id, body.item_id, kind, user.id)
    return {"now_playing": snapshot}


@router.post("/watchlists/{watchlist_id}/now-playing/{kind}/finish")
async def finish(
    watchlist_id: str,
    kind: MediaKind,
    body: Optional[FinishRequest] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Mark the now playing item as finished."""
    body = body or FinishRequest()
    item = await watchlists.finish(
        session, watchlist_id, kind, user.id, rating=body.rating, comment=body.comment
    )
    return serialize_item(item)


@router.post("/watchlists/{watchlist_id}/now-playing/{kind}/move-back")
async def move_back(
    watchlist_id: str,
    kind: MediaKind,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Put the now playing item back in the queue."""
    item = await watchlists.move_back(session, watchlist_id, kind, user.id)
    return serialize_item(item)


@router.delete("/watchlists/{watchlist_id}/now-playing/{kind}", status_code=204)
async def discard_now_playing(
    watchlist_id: str,
    kind: MediaKind,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    await watchlists.discard_now_playing(session, watchlist_id, kind, user.id)


@router.post("/watchlists/{watchlist_id}/invites", status_code=201)
async def invite_partner(
    watchlist_id: str,
    body: InviteRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Invite a partner by email."""
    outcome = await invites.invite(session, watchlist_id, user, body.email)
    if outcome.pending_invite_id:
        schedule_invite_email(outcome.pending_invite_id)
    return invite_response(outcome)


@router.post("/invites/{invite_id}/accept")
async def accept_invite(
    invite_id: str,
    body: AcceptInviteRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Accept an emailed invite after signing up."""
    watchlist_id = await invites.accept_invite(session, user, body.watchlist_id, invite_id)
    return {"watchlist_id": watchlist_id}


@router.post("/watchlists/{watchlist_id}/accept")
async def accept_account_invite(
    watchlist_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    joined = await invites.accept_account_invite(session, user, watchlist_id)
    return {"watchlist_id": joined}


@router.post("/watchlists/{watchlist_id}/decline", status_code=204)
async def decline_account_invite(
    watchlist_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    await invites.decline_account_invite(session, user, watchlist_id)


@router.get("/search")
async def search_media(
    q: str = Query(..., min_length=1),
    user: User = Depends(get_current_user)
):
    """Search movies and shows to add."""
    from urnext.services.tmdb import TMDBClient
    import httpx

    if not settings.tmdb_api_key:
        raise ServiceNotConfigured("Media search is not configured")

    client = TMDBClient(settings.tmdb_api_key, settings.tmdb_base_url)
    try:
        results = await client.search(q)
    except httpx.HTTPError as e:
        logger.error(f"TMDB search failed: {e}")
        raise Transient("Search is temporarily unavailable")

    return {
        "results": [candidate.model_dump(mode="json") for candidate in results],
        "total_count": len(results)
    }
