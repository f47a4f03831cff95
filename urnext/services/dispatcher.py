from datetime import datetime
from pathlib import Path
from typing import Optional
import logging

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from urnext.config import settings
from urnext.database import async_session
from urnext.errors import InviteDeliveryError
from urnext.models import PendingInvite
from urnext.services.mailer import SendGridClient

logger = logging.getLogger(__name__)

templates = Environment(
    loader=FileSystemLoader(Path(__file__).parent.parent / "templates"),
    autoescape=select_autoescape(["html"])
)


def get_mailer() -> Optional[SendGridClient]:
    """Get the configured SendGrid client."""
    if not settings.sendgrid_api_key or not settings.sendgrid_from_email:
        return None
    return SendGridClient(settings.sendgrid_api_key, settings.sendgrid_from_email)


def render_invite_email(invite: PendingInvite, signup_url: Optional[str] = None) -> tuple[str, str]:
    """Build subject and HTML body for an invite."""
    signup_link = (signup_url or settings.signup_url).format(invite_id=invite.id)
    subject = f"{invite.invited_by_name} invited you to join their watchlist"
    html = templates.get_template("invite_email.html").render(
        invite=invite,
        signup_link=signup_link
    )
    return subject, html


async def dispatch_invite(
    session: AsyncSession,
    invite_id: str,
    mailer: SendGridClient
) -> bool:
    """
    Send the email for one pending invite and mark it sent.
    Returns False when there was nothing to send.
    """
    invite = await session.get(PendingInvite, invite_id)
    if not invite:
        logger.warning(f"Invite {invite_id} no longer exists, not sending")
        return False
    if invite.email_sent:
        return False

    subject, html = render_invite_email(invite)

    try:
        await mailer.send(invite.email, subject, html)
    except httpx.HTTPError as e:
        logger.error(f"Error sending invite {invite_id}: {e}")
        raise InviteDeliveryError(f"Failed to send invitation email: {e}")

    invite.email_sent = True
    invite.email_sent_at = datetime.now()
    try:
        await session.commit()
    except StaleDataError:
        await session.rollback()
        logger.info(f"Invite {invite_id} was accepted or removed while its email was sending")
        return False

    logger.info(f"Invite email sent for {invite_id}")
    return True


async def dispatch_unsent_invites(mailer: Optional[SendGridClient] = None) -> dict:
    """Send every invite email that has not gone out yet."""
    mailer = mailer or get_mailer()
    if not mailer:
        logger.error("SendGrid not configured, invite emails not sent")
        return {"sent": 0, "failed": 0}

    sent = 0
    failed = 0

    async with async_session() as session:
        result = await session.execute(
            select(PendingInvite.id)
            .where(PendingInvite.email_sent == False)  # noqa: E712
            .order_by(PendingInvite.created_at)
        )
        invite_ids = list(result.scalars().all())

        for invite_id in invite_ids:
            try:
                if await dispatch_invite(session, invite_id, mailer):
                    sent += 1
            except InviteDeliveryError:
                failed += 1

    if sent or failed:
        logger.info(f"Invite dispatch complete: {sent} sent, {failed} failed")
    return {"sent": sent, "failed": failed}
