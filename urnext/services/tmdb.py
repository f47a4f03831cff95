import httpx
from typing import Optional
import logging

from urnext.models import MediaKind
from urnext.schemas import MediaCandidate

logger = logging.getLogger(__name__)

# TMDB calls shows "tv"
TMDB_MEDIA_TYPES = {
    "movie": MediaKind.MOVIE,
    "tv": MediaKind.SHOW
}


def to_candidate(result: dict) -> Optional[MediaCandidate]:
    """Map one /search/multi result to a candidate, None for people and blanks."""
    kind = TMDB_MEDIA_TYPES.get(result.get("media_type"))
    if kind is None:
        return None

    title = result.get("title") or result.get("name") or ""
    if not title:
        return None

    return MediaCandidate(
        title=title,
        kind=kind,
        poster_reference=result.get("poster_path") or "",
        synopsis=result.get("overview") or ""
    )


class TMDBClient:
    """Client for The Movie Database search API."""

    def __init__(self, api_key: str, base_url: str = "https://api.themoviedb.org/3", transport=None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.transport = transport

    async def search(self, query: str) -> list[MediaCandidate]:
        """Search movies and shows by title."""
        async with httpx.AsyncClient(transport=self.transport) as client:
            response = await client.get(
                f"{self.base_url}/search/multi",
                params={
                    "api_key": self.api_key,
                    "query": query,
                    "include_adult": "false",
                    "language": "en-US",
                    "page": 1
                },
                timeout=10.0
            )
            response.raise_for_status()
            data = response.json()

        candidates = []
        for result in data.get("results", []):
            candidate = to_candidate(result)
            if candidate:
                candidates.append(candidate)

        logger.info(f"TMDB search '{query}' returned {len(candidates)} results")
        return candidates
