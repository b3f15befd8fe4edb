import logging
from typing import Any, Optional

import httpx

from .config import settings
from .metrics import UPSTREAM_FAILURES

logger = logging.getLogger(__name__)

TMDB_BASE_URL = "https://api.themoviedb.org/3"
TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p"


class TMDBClient:
    """Poster lookups on The Movie Database. Every failure degrades to None."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = settings.tmdb_api_key if api_key is None else api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _search(self, kind: str, query: str) -> Optional[dict[str, Any]]:
        if not self.is_configured:
            logger.warning("TMDB: API key not configured")
            return None
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{TMDB_BASE_URL}/search/{kind}",
                    params={"api_key": self.api_key, "query": query, "page": "1"},
                    timeout=settings.http_timeout_seconds,
                )
            if response.status_code != 200:
                logger.warning(f"TMDB search failed for {query!r}: {response.status_code}")
                UPSTREAM_FAILURES.labels(upstream="tmdb").inc()
                return None
            results = response.json().get("results") or []
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"TMDB {kind} search failed: {e}")
            UPSTREAM_FAILURES.labels(upstream="tmdb").inc()
            return None

        if results:
            logger.debug(f"TMDB found: {query!r} -> poster: {results[0].get('poster_path')}")
            return results[0]
        return None

    async def search_tv(self, query: str) -> Optional[dict[str, Any]]:
        """Search for a TV show by name."""
        return await self._search("tv", query)

    async def search_movie(self, query: str) -> Optional[dict[str, Any]]:
        """Search for a movie by name."""
        return await self._search("movie", query)

    @staticmethod
    def get_poster_url(result: dict[str, Any], size: str = "w342") -> Optional[str]:
        if not result.get("poster_path"):
            return None
        return f"{TMDB_IMAGE_BASE}/{size}{result['poster_path']}"

    async def find_poster_url(self, name: str, kind: str) -> Optional[str]:
        """Poster URL for a "tv" or "movie" title, or None."""
        if kind == "tv":
            result = await self.search_tv(name)
        else:
            result = await self.search_movie(name)
        if not result:
            return None
        return self.get_poster_url(result)


# Global client instance
tmdb_client = TMDBClient()
