from typing import Optional

from pydantic import BaseModel, Field

from urnext.models import MediaKind


class MediaCandidate(BaseModel):
    """A movie or show proposed for the queue."""
    title: str = Field(min_length=1, max_length=500)
    kind: MediaKind
    poster_reference: str = ""
    synopsis: str = ""


class WatchlistCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    partner_email: Optional[str] = None


class PromoteRequest(BaseModel):
    item_id: str


class FinishRequest(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = None


class ReviewRequest(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = None


class InviteRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)


class AcceptInviteRequest(BaseModel):
    watchlist_id: str
