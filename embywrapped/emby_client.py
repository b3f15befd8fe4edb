import logging
from typing import Any, Iterable, Optional

import httpx
from pydantic import ValidationError

from .config import settings
from .metrics import UPSTREAM_FAILURES
from .models import CatalogItem, EmbyUser, PlaybackEvent

logger = logging.getLogger(__name__)

ITEM_FIELDS = "Genres,SeriesId"


class EmbyError(Exception):
    """Emby server or Playback Reporting plugin request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UserNotFoundError(EmbyError):
    """No such user on the Emby server."""


class EmbyClient:
    """Read-only client for the Emby REST API and the Playback Reporting plugin."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        self.base_url = (base_url or settings.emby_base_url).rstrip("/")
        self.api_key = settings.emby_api_key if api_key is None else api_key

    async def _get(self, endpoint: str, params: Optional[dict[str, str]] = None) -> Any:
        query = {"api_key": self.api_key}
        query.update(params or {})
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self.base_url}{endpoint}",
                    params=query,
                    headers={"Accept": "application/json"},
                    timeout=settings.http_timeout_seconds,
                )
        except httpx.HTTPError as e:
            UPSTREAM_FAILURES.labels(upstream="emby").inc()
            raise EmbyError(f"Emby request to {endpoint} failed: {e}") from e

        if response.status_code != 200:
            UPSTREAM_FAILURES.labels(upstream="emby").inc()
            raise EmbyError(
                f"Emby API error: {response.status_code} for {endpoint}",
                status_code=response.status_code,
            )
        return response.json()

    async def get_users(self) -> list[EmbyUser]:
        """Get all users from the Emby server."""
        data = await self._get("/Users")
        return [EmbyUser.model_validate(user) for user in data or []]

    async def find_user_by_name(self, username: str) -> Optional[EmbyUser]:
        """Find a user by name, ignoring case."""
        wanted = username.strip().lower()
        for user in await self.get_users():
            if user.name.lower() == wanted:
                return user
        return None

    async def get_user(self, user_id: str) -> EmbyUser:
        try:
            data = await self._get(f"/Users/{user_id}")
        except EmbyError as e:
            # Emby answers 400 for ids that are not valid GUIDs
            if e.status_code in (400, 404):
                raise UserNotFoundError(f"User {user_id} not found", e.status_code) from e
            raise
        return EmbyUser.model_validate(data)

    async def get_user_playback_activity(self, user_id: str, days: int = 365) -> list[PlaybackEvent]:
        """Get a user's playback rows from the Playback Reporting plugin."""
        data = await self._get(
            "/user_usage_stats/UserPlaylist",
            {"user_id": user_id, "days": str(days)},
        )
        if not isinstance(data, list):
            logger.warning(f"Unexpected playback activity payload for user {user_id}")
            return []
        events = []
        for row in data:
            if not isinstance(row, dict):
                continue
            try:
                events.append(PlaybackEvent.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed playback row for user {user_id}: {e}")
        return events

    async def get_items(self, user_id: str, item_ids: list[str]) -> list[CatalogItem]:
        """Get items visible to a user; ids the user cannot see are simply absent."""
        if not item_ids:
            return []
        data = await self._get(
            f"/Users/{user_id}/Items",
            {"Ids": ",".join(item_ids), "Fields": ITEM_FIELDS},
        )
        return [CatalogItem.model_validate(item) for item in (data or {}).get("Items") or []]

    async def fetch_catalog(
        self,
        user_id: str,
        item_ids: Iterable[str],
        batch_size: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> dict[str, CatalogItem]:
        """Fetch catalog items in batches, keeping whatever batches succeed."""
        batch_size = batch_size or settings.item_batch_size
        limit = limit or settings.max_catalog_items
        unique_ids = list(dict.fromkeys(str(item_id) for item_id in item_ids))
        if len(unique_ids) > limit:
            logger.warning(
                f"Catalog lookup for user {user_id} capped at {limit} of {len(unique_ids)} items"
            )
            unique_ids = unique_ids[:limit]

        catalog: dict[str, CatalogItem] = {}
        for i in range(0, len(unique_ids), batch_size):
            batch = unique_ids[i : i + batch_size]
            try:
                items = await self.get_items(user_id, batch)
            except (EmbyError, ValidationError) as e:
                logger.warning(f"Failed to fetch item details: {e}")
                continue
            for item in items:
                catalog[item.id] = item
        return catalog

    def get_image_url(self, item_id: str, image_type: str = "Primary", max_width: int = 400) -> str:
        return (
            f"{self.base_url}/Items/{item_id}/Images/{image_type}"
            f"?maxWidth={max_width}&api_key={self.api_key}"
        )

    def get_user_image_url(self, user_id: str, max_width: int = 200) -> str:
        return (
            f"{self.base_url}/Users/{user_id}/Images/Primary"
            f"?maxWidth={max_width}&api_key={self.api_key}"
        )


# Global client instance
emby_client = EmbyClient()
