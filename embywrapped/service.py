import asyncio
import logging
from datetime import datetime
from typing import Optional

from .config import settings
from .emby_client import EmbyClient, emby_client
from .format import (
    build_highlights,
    get_day_personality,
    get_time_comparison,
    get_viewing_personality,
)
from .metrics import REPORT_CACHE_HITS, REPORTS_GENERATED
from .models import EmbyUser, FullMusicStats, PlaybackEvent, TopItem, UserStats, WrappedPage
from .report_cache import ReportCache, report_cache
from .stats import aggregate_music_stats, aggregate_user_stats, partition_plays, select_plays
from .timerange import (
    TimeRange,
    available_time_ranges,
    current_year_range,
    lookback_days,
    parse_time_range,
    to_canonical_string,
)
from .tmdb_client import TMDBClient, tmdb_client

logger = logging.getLogger(__name__)


class WrappedService:
    """Builds (or serves from cache) a user's wrapped report for one range."""

    def __init__(
        self,
        emby: Optional[EmbyClient] = None,
        tmdb: Optional[TMDBClient] = None,
        cache: Optional[ReportCache] = None,
        filter_user_id: Optional[str] = None,
    ):
        self.emby = emby or emby_client
        self.tmdb = tmdb or tmdb_client
        self.cache = cache or report_cache
        self.filter_user_id = filter_user_id or settings.filter_user_id

    def resolve_range(self, value: Optional[str], now: Optional[datetime] = None) -> TimeRange:
        if not value:
            return current_year_range(now)
        return parse_time_range(value)

    async def _fetch_activity(self, user_id: str, time_range: TimeRange) -> list[PlaybackEvent]:
        days = lookback_days(time_range)
        events = await self.emby.get_user_playback_activity(user_id, days)
        logger.info(f"Fetched {len(events)} playback rows for user {user_id} ({days} days)")
        return events

    async def get_user_stats(self, user_id: str, time_range: TimeRange) -> UserStats:
        range_key = to_canonical_string(time_range)
        cached = await self.cache.get(user_id, range_key)
        if cached:
            REPORT_CACHE_HITS.inc()
            return UserStats.model_validate_json(cached)

        user = await self.emby.get_user(user_id)
        events = await self._fetch_activity(user_id, time_range)

        video, _ = partition_plays(select_plays(events, time_range))
        catalog = await self.emby.fetch_catalog(
            self.filter_user_id or user_id, [play.event.item_id for play in video]
        )

        stats = aggregate_user_stats(
            user.id,
            user.name,
            events,
            catalog,
            time_range,
            image_url=self.emby.get_image_url,
        )
        stats = await self._with_posters(stats)
        REPORTS_GENERATED.labels(kind="user").inc()

        await self.cache.set(user_id, range_key, stats.model_dump_json(by_alias=True))
        return stats

    async def _poster(self, item: TopItem, kind: str) -> TopItem:
        try:
            url = await self.tmdb.find_poster_url(item.name, kind)
        except Exception as e:
            logger.warning(f"Poster lookup failed for {item.name!r}: {e}")
            return item
        if not url:
            return item
        return item.model_copy(update={"tmdb_image_url": url})

    async def _with_posters(self, stats: UserStats) -> UserStats:
        """Attach TMDB posters to the top lists; Emby artwork stays as the fallback."""
        if not self.tmdb.is_configured:
            return stats
        movies, shows = await asyncio.gather(
            asyncio.gather(*(self._poster(item, "movie") for item in stats.top_movies)),
            asyncio.gather(*(self._poster(item, "tv") for item in stats.top_shows)),
        )
        return stats.model_copy(update={"top_movies": list(movies), "top_shows": list(shows)})

    async def get_user_wrapped(self, user_id: str, time_range_value: Optional[str]) -> UserStats:
        return await self.get_user_stats(user_id, self.resolve_range(time_range_value))

    async def get_wrapped_page(self, user_id: str, time_range_value: Optional[str]) -> WrappedPage:
        time_range = self.resolve_range(time_range_value)
        stats = await self.get_user_stats(user_id, time_range)
        range_key = to_canonical_string(time_range)
        return WrappedPage(
            stats=stats,
            user_image_url=self.emby.get_user_image_url(user_id),
            server_name=settings.server_name,
            current_time_range=range_key,
            time_range_options=available_time_ranges(),
            personality=get_viewing_personality(
                stats.is_night_owl,
                stats.is_early_bird,
                stats.is_weekend_warrior,
                peak_hour=stats.peak_hour,
                binge_count=stats.binge_count,
                total_minutes=stats.total_minutes,
            ),
            day_personality=get_day_personality(stats.peak_day),
            time_comparison=get_time_comparison(stats.total_minutes, seed=f"{user_id}:{range_key}"),
            highlights=build_highlights(stats),
        )

    async def get_user_music(self, user_id: str, time_range_value: Optional[str]) -> FullMusicStats:
        time_range = self.resolve_range(time_range_value)
        cache_key = f"{to_canonical_string(time_range)}:music"
        cached = await self.cache.get(user_id, cache_key)
        if cached:
            REPORT_CACHE_HITS.inc()
            return FullMusicStats.model_validate_json(cached)

        user = await self.emby.get_user(user_id)
        events = await self._fetch_activity(user_id, time_range)
        music = aggregate_music_stats(user.id, user.name, events, time_range)
        REPORTS_GENERATED.labels(kind="music").inc()

        await self.cache.set(user_id, cache_key, music.model_dump_json(by_alias=True))
        return music

    async def validate_user(self, username: str) -> Optional[EmbyUser]:
        return await self.emby.find_user_by_name(username)


# Global service instance
wrapped_service = WrappedService()
