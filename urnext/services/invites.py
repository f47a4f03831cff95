from dataclasses import dataclass
from typing import Optional
import logging
import re

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from urnext.errors import (
    AlreadyInvited, ConcurrentModification, EmailMismatch, InvalidRequest, NotFound,
    WatchlistMismatch
)
from urnext.feed import user_topic, watchlist_topic
from urnext.identity import Identity
from urnext.models import AccountInvite, PendingInvite, User, Watchlist, WatchlistMember
from urnext.services.watchlist import commit, get_member_ids, load_for_member

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class InviteOutcome:
    """Which invitation path was taken for an email."""
    email: str
    existing_account: bool
    pending_invite_id: Optional[str] = None


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise InvalidRequest("Please enter a valid email address")
    return email


def check_invitee(inviter: User, email: str) -> str:
    """Normalized invitee email, rejecting malformed addresses and self-invites."""
    email = normalize_email(email)
    if email == (inviter.email or "").lower():
        raise InvalidRequest("You can't invite yourself")
    return email


async def sync_user(session: AsyncSession, identity: Identity) -> User:
    """Create or refresh the account row for an authenticated identity."""
    user = await session.get(User, identity.user_id)
    email = identity.email.strip().lower()

    if user is None:
        user = User(
            id=identity.user_id,
            email=email,
            display_name=identity.display_name
        )
        session.add(user)
        await commit(session)
        logger.info(f"Created user {identity.user_id}")
    elif user.email != email or (identity.display_name and user.display_name != identity.display_name):
        user.email = email
        user.display_name = identity.display_name or user.display_name
        await commit(session)

    return user


async def invite(
    session: AsyncSession,
    watchlist_id: str,
    inviter: User,
    email: str
) -> InviteOutcome:
    """Invite someone to a watchlist by email."""
    email = check_invitee(inviter, email)
    watchlist = await load_for_member(session, watchlist_id, inviter.id)

    result = await session.execute(select(User).where(User.email == email))
    invitee = result.scalars().first()

    if invitee:
        if invitee.id in await get_member_ids(session, watchlist_id):
            raise AlreadyInvited("This user is already a member of the watchlist")

        result = await session.execute(
            select(AccountInvite).where(
                AccountInvite.user_id == invitee.id,
                AccountInvite.watchlist_id == watchlist_id
            )
        )
        if result.scalar_one_or_none():
            raise AlreadyInvited("User has already been invited to this watchlist")

        session.add(AccountInvite(
            user_id=invitee.id,
            watchlist_id=watchlist_id,
            invited_by=inviter.id
        ))
        await commit(session, user_topic(invitee.id))
        logger.info(f"{inviter.id} invited existing user {invitee.id} to {watchlist_id}")
        return InviteOutcome(email=email, existing_account=True)

    result = await session.execute(
        select(PendingInvite).where(
            PendingInvite.email == email,
            PendingInvite.watchlist_id == watchlist_id
        )
    )
    if result.scalars().first():
        raise AlreadyInvited()

    pending = PendingInvite(
        email=email,
        watchlist_id=watchlist_id,
        watchlist_name=watchlist.name,
        invited_by=inviter.id,
        invited_by_name=inviter.display_name or "A user"
    )
    session.add(pending)
    await commit(session)
    logger.info(f"{inviter.id} created pending invite {pending.id} for {watchlist_id}")
    return InviteOutcome(email=email, existing_account=False, pending_invite_id=pending.id)


async def _join(session: AsyncSession, user: User, watchlist_id: str):
    """Add the user to the members once and point their account at the watchlist."""
    if user.id not in await get_member_ids(session, watchlist_id):
        session.add(WatchlistMember(watchlist_id=watchlist_id, user_id=user.id))
    user.active_watchlist_id = watchlist_id


async def _commit_join(session: AsyncSession, user_id: str, watchlist_id: str):
    """Commit a join; losing a race to an identical accept still counts as joined."""
    try:
        await commit(session, watchlist_topic(watchlist_id), user_topic(user_id))
    except ConcurrentModification:
        if user_id not in await get_member_ids(session, watchlist_id):
            raise
        logger.info(f"{user_id} was already joined to {watchlist_id} by a concurrent accept")


async def accept_invite(
    session: AsyncSession,
    user: User,
    watchlist_id: str,
    invite_id: str
) -> str:
    """Join the watchlist of an emailed invite; returns the joined watchlist id."""
    user_id = user.id
    pending = await session.get(PendingInvite, invite_id)
    if not pending:
        # Retried accept after the invite was consumed
        if user.id in await get_member_ids(session, watchlist_id):
            return watchlist_id
        raise NotFound("Invite not found or already accepted")

    if pending.email.lower() != (user.email or "").lower():
        raise EmailMismatch()
    if pending.watchlist_id != watchlist_id:
        raise WatchlistMismatch()

    if not await session.get(Watchlist, watchlist_id):
        raise NotFound("Watchlist not found")

    await _join(session, user, watchlist_id)
    await session.delete(pending)

    await _commit_join(session, user_id, watchlist_id)
    logger.info(f"{user_id} accepted invite {invite_id} to {watchlist_id}")
    return watchlist_id


async def accept_account_invite(session: AsyncSession, user: User, watchlist_id: str) -> str:
    """Join a watchlist the user's account was invited to."""
    user_id = user.id
    result = await session.execute(
        select(AccountInvite).where(
            AccountInvite.user_id == user.id,
            AccountInvite.watchlist_id == watchlist_id
        )
    )
    account_invite = result.scalar_one_or_none()

    if account_invite is None:
        # Retried accept after the invite was consumed
        if user.id in await get_member_ids(session, watchlist_id):
            return watchlist_id
        raise NotFound("Invite not found")

    if not await session.get(Watchlist, watchlist_id):
        raise NotFound("Watchlist not found")

    await _join(session, user, watchlist_id)
    await session.delete(account_invite)

    await _commit_join(session, user_id, watchlist_id)
    logger.info(f"{user_id} joined {watchlist_id}")
    return watchlist_id


async def decline_account_invite(session: AsyncSession, user: User, watchlist_id: str):
    result = await session.execute(
        select(AccountInvite).where(
            AccountInvite.user_id == user.id,
            AccountInvite.watchlist_id == watchlist_id
        )
    )
    account_invite = result.scalar_one_or_none()
    if account_invite is None:
        raise NotFound("Invite not found")

    await session.delete(account_invite)
    await commit(session, user_topic(user.id))


async def list_account_invites(session: AsyncSession, user: User) -> list[dict]:
    result = await session.execute(
        select(AccountInvite, Watchlist.name)
        .join(Watchlist, Watchlist.id == AccountInvite.watchlist_id)
        .where(AccountInvite.user_id == user.id)
        .order_by(AccountInvite.created_at)
    )
    return [
        {
            "watchlist_id": account_invite.watchlist_id,
            "watchlist_name": name,
            "invited_by": account_invite.invited_by,
            "created_at": account_invite.created_at.isoformat()
        }
        for account_invite, name in result.all()
    ]
