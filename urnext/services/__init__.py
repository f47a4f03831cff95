from urnext.services.tmdb import TMDBClient
from urnext.services.mailer import SendGridClient
from urnext.services.dispatcher import dispatch_unsent_invites

__all__ = [
    "TMDBClient",
    "SendGridClient",
    "dispatch_unsent_invites"
]
