import asyncio
import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Optional

from .config import settings
from .emby_client import EmbyClient, emby_client
from .metrics import REPORTS_GENERATED, SERVER_STATS_SECONDS
from .models import CatalogItem, EmbyUser, PlaybackEvent, ServerStats, TopItem
from .report_cache import MemoryReportCache, ReportCache
from .stats import (
    AggregationGroup,
    Play,
    partition_plays,
    peak_index,
    rank_groups,
    resolve_show_identity,
    round_half_up,
    select_plays,
    show_name_prefix,
    slugify,
)
from .timerange import TimeRange, lookback_days, to_canonical_string
from .tmdb_client import TMDBClient, tmdb_client

logger = logging.getLogger(__name__)

SERVER_TOP_TITLES = 5
_CACHE_OWNER = "server"


class ServerRollup:
    """Running totals for the server-wide report."""

    def __init__(self) -> None:
        self.active_users = 0
        self.total_seconds = 0
        self.total_movies = 0
        self.total_episodes = 0
        self.monthly_minutes = [0.0] * 12
        self.movies: dict[str, AggregationGroup] = {}
        self.shows: dict[str, AggregationGroup] = {}

    def add_user(self, video: list[Play], catalog: Optional[Mapping[str, CatalogItem]]) -> None:
        counted = False
        for play in video:
            item = None
            if catalog is not None:
                item = catalog.get(play.event.item_id)
                if item is None:
                    continue
            counted = True
            self.total_seconds += play.seconds
            self.monthly_minutes[play.timestamp.month - 1] += play.minutes

            if play.kind == "movie":
                self.total_movies += 1
                name = play.event.item_name
                self.movies.setdefault(name, AggregationGroup(slugify(name), name)).add(play.minutes)
            elif play.kind == "episode":
                self.total_episodes += 1
                identity = resolve_show_identity(play.event, item)
                name = (item and item.series_name) or show_name_prefix(play.event.item_name)
                group = self.shows.setdefault(identity.key, AggregationGroup(identity.key, name))
                group.add(play.minutes, episode_id=play.event.item_id)
        if counted:
            self.active_users += 1


class ServerStatsBuilder:
    """Server-wide rollup across every user, memoised for a few minutes."""

    def __init__(
        self,
        emby: Optional[EmbyClient] = None,
        tmdb: Optional[TMDBClient] = None,
        cache: Optional[ReportCache] = None,
        filter_user_id: Optional[str] = None,
        batch_size: Optional[int] = None,
    ):
        self.emby = emby or emby_client
        self.tmdb = tmdb or tmdb_client
        self.cache = cache or MemoryReportCache(settings.server_stats_ttl_minutes * 60)
        self.filter_user_id = filter_user_id or settings.filter_user_id
        self.batch_size = batch_size or settings.user_batch_size

    async def _fetch_all_activity(
        self, users: list[EmbyUser], days: int
    ) -> list[list[PlaybackEvent]]:
        """Activity per user in parallel batches; a failed fetch counts as no activity."""
        activity: list[list[PlaybackEvent]] = []
        for i in range(0, len(users), self.batch_size):
            batch = users[i : i + self.batch_size]
            results = await asyncio.gather(
                *(self.emby.get_user_playback_activity(user.id, days) for user in batch),
                return_exceptions=True,
            )
            for user, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning(f"Skipping activity for {user.name}: {result}")
                    activity.append([])
                elif isinstance(result, BaseException):
                    raise result
                else:
                    activity.append(result)
        return activity

    async def _top_items(self, groups: dict[str, AggregationGroup], kind: str) -> list[TopItem]:
        ranked = rank_groups(groups.values(), SERVER_TOP_TITLES)
        posters: list = [None] * len(ranked)
        if self.tmdb.is_configured:
            posters = await asyncio.gather(
                *(self.tmdb.find_poster_url(group.name, kind) for group in ranked),
                return_exceptions=True,
            )
        items = []
        for group, poster in zip(ranked, posters):
            if isinstance(poster, Exception):
                logger.warning(f"Poster lookup failed for {group.name!r}: {poster}")
                poster = None
            items.append(
                TopItem(
                    id=group.key,
                    name=group.name,
                    image_url=poster or "",
                    tmdb_image_url=poster,
                    minutes=round_half_up(group.minutes),
                    count=group.count,
                    episodes=len(group.episode_ids) if kind == "tv" else None,
                )
            )
        return items

    async def build(self, time_range: TimeRange) -> ServerStats:
        range_key = to_canonical_string(time_range)
        cached = await self.cache.get(_CACHE_OWNER, range_key)
        if cached:
            logger.info("Returning cached server stats")
            return ServerStats.model_validate_json(cached)

        logger.info("Generating fresh server stats...")
        started = time.monotonic()

        users = await self.emby.get_users()
        activity = await self._fetch_all_activity(users, lookback_days(time_range))
        per_user_video = [partition_plays(select_plays(events, time_range))[0] for events in activity]

        catalog = None
        if self.filter_user_id:
            item_ids = [play.event.item_id for video in per_user_video for play in video]
            catalog = await self.emby.fetch_catalog(self.filter_user_id, item_ids)

        rollup = ServerRollup()
        for video in per_user_video:
            rollup.add_user(video, catalog)

        top_shows, top_movies = await asyncio.gather(
            self._top_items(rollup.shows, "tv"),
            self._top_items(rollup.movies, "movie"),
        )
        stats = ServerStats(
            time_range=range_key,
            generated_at=datetime.now(timezone.utc),
            total_users=len(users),
            active_users=rollup.active_users,
            total_minutes=round_half_up(rollup.total_seconds / 60),
            total_movies=rollup.total_movies,
            total_episodes=rollup.total_episodes,
            peak_month=peak_index(rollup.monthly_minutes),
            monthly_minutes=tuple(round_half_up(m) for m in rollup.monthly_minutes),
            top_shows=top_shows,
            top_movies=top_movies,
        )

        elapsed = time.monotonic() - started
        SERVER_STATS_SECONDS.set(elapsed)
        REPORTS_GENERATED.labels(kind="server").inc()
        logger.info(f"Server stats generated in {elapsed * 1000:.0f}ms")

        await self.cache.set(_CACHE_OWNER, range_key, stats.model_dump_json(by_alias=True))
        return stats


# Global builder instance
server_stats_builder = ServerStatsBuilder()
