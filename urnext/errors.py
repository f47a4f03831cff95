"""Failures raised by watchlist operations.

Every operation either commits all of its writes or raises one of these
without mutating anything. ``kind`` groups the classes the way a client
needs to tell them apart: expected rule rejections (``turn_violation``,
``already_occupied``) are rendered as messages, ``transient`` failures
are worth retrying, the rest are request problems.
"""

from typing import Optional


class WatchlistError(Exception):
    kind = "error"
    status_code = 400
    retryable = False
    default_detail = "Request failed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "detail": self.detail,
            "retryable": self.retryable
        }


class NotFound(WatchlistError):
    kind = "not_found"
    status_code = 404
    default_detail = "Not found"


class PermissionDenied(WatchlistError):
    kind = "permission_denied"
    status_code = 403
    default_detail = "You are not allowed to do that"


class InvalidRequest(WatchlistError):
    kind = "invalid_request"
    status_code = 422
    default_detail = "Invalid request"


class NotYourTurn(WatchlistError):
    kind = "turn_violation"
    status_code = 409
    default_detail = "It's not your turn. Let your partner choose next!"


class AlreadyPlaying(WatchlistError):
    kind = "already_occupied"
    status_code = 409
    default_detail = "Something is already playing. Finish it or move it back first."


class NothingPlaying(WatchlistError):
    kind = "nothing_playing"
    status_code = 409
    default_detail = "Nothing is currently playing"


class OriginalRecordMissing(WatchlistError):
    kind = "original_record_missing"
    status_code = 409
    default_detail = "The playing item has no record to finish"


class AlreadyInvited(WatchlistError):
    kind = "duplicate_invite"
    status_code = 409
    default_detail = "An invite has already been sent to this email"


class EmailMismatch(WatchlistError):
    kind = "identity_mismatch"
    status_code = 403
    default_detail = "This invite is for a different email address"


class WatchlistMismatch(WatchlistError):
    kind = "identity_mismatch"
    status_code = 403
    default_detail = "This invite is for a different watchlist"


class Transient(WatchlistError):
    kind = "transient"
    status_code = 503
    retryable = True
    default_detail = "Temporarily unavailable, please retry"


class StoreUnavailable(Transient):
    default_detail = "The database is unavailable, please retry"


class ConcurrentModification(Transient):
    status_code = 409
    default_detail = "The watchlist changed while saving, please retry"


class ServiceNotConfigured(Transient):
    default_detail = "Service not configured"


class InviteDeliveryError(Transient):
    default_detail = "Failed to send invitation email"
