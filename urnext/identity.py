"""Identity boundary.

Authentication happens in front of the service; the proxy forwards the
member's stable id, email and display name as request headers.
"""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from urnext.config import settings
from urnext.database import get_session


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str
    display_name: str = ""


def get_identity(request: Request) -> Identity:
    """Dependency for the authenticated caller."""
    user_id = request.headers.get(settings.identity_header_id, "").strip()
    email = request.headers.get(settings.identity_header_email, "").strip()

    if not user_id or not email:
        raise HTTPException(status_code=401, detail="Not authenticated")

    display_name = request.headers.get(settings.identity_header_name, "").strip()
    # Partners see each other by first name
    first_name = display_name.split(" ")[0] if display_name else ""

    return Identity(user_id=user_id, email=email, display_name=first_name)


async def get_current_user(
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session)
):
    """Dependency for the caller's account row, created on first sight."""
    from urnext.services.invites import sync_user

    return await sync_user(session, identity)
