from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///data/urnext.db"
    log_level: str = "INFO"

    # Headers set by the authenticating proxy in front of the service
    identity_header_id: str = "X-Auth-User-Id"
    identity_header_email: str = "X-Auth-User-Email"
    identity_header_name: str = "X-Auth-User-Name"

    tmdb_api_key: Optional[str] = None
    tmdb_base_url: str = "https://api.themoviedb.org/3"

    sendgrid_api_key: Optional[str] = None
    sendgrid_from_email: str = ""
    signup_url: str = "https://ur-next.com/signup?invite={invite_id}"

    # Minutes between sweeps for unsent invite emails, 0 disables the job
    invite_sweep_minutes: int = 15
    stream_keepalive_seconds: float = 15.0

    class Config:
        env_prefix = "URNEXT_"


settings = Settings()
