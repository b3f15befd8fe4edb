"""Aggregation of raw playback events into a wrapped report.

Everything here is a pure function of its inputs: events and catalog items in,
frozen report models out. Events are processed in the order given, and every
ranking uses a stable sort, so ties resolve to the first encountered group and
identical inputs always produce identical reports.
"""

import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

from .models import (
    ArtistStat,
    BingeSession,
    CatalogItem,
    FullMusicStats,
    GenreStat,
    HeatmapData,
    MusicStats,
    PlaybackEvent,
    TopItem,
    TrackStat,
    UserStats,
    WatchMarker,
)
from .timerange import TimeRange, format_label, to_canonical_string

logger = logging.getLogger(__name__)

TOP_TITLES = 10
MIN_TOP_GENRES = 5
MAX_TOP_GENRES = 8
COMPACT_TOP_ARTISTS = 5
COMPACT_TOP_TRACKS = 5
FULL_TOP_ARTISTS = 10
FULL_TOP_TRACKS = 10

BINGE_MIN_EPISODES = 3
BINGE_MIN_AVG_MINUTES = 10
BINGE_MAX_EPISODES = 20

NIGHT_OWL_SHARE = 0.3
EARLY_BIRD_SHARE = 0.25
WEEKEND_FACTOR = 1.5
# Ratio reported for viewers who watched movies and no episodes at all
MOVIE_ONLY_RATIO = 10.0

SEPARATOR = " - "
UNKNOWN_ARTIST = "Unknown Artist"
NON_VIDEO_TYPES = {"audio", "musicvideo"}

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_DATE = re.compile(r"^\s*(\d{4})-(\d{1,2})-(\d{1,2})")
_TIME = re.compile(r"^\s*(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?")
_WHITESPACE = re.compile(r"\s+")


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def round2(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


def parse_duration_seconds(raw: Optional[str]) -> int:
    """Leading integer of a duration string; anything unusable counts as 0."""
    match = _LEADING_INT.match(raw or "")
    if not match:
        return 0
    return max(0, int(match.group(1)))


def parse_timestamp(day: str, clock: str) -> Optional[datetime]:
    """Naive local timestamp from the feed's date and time columns.

    Returns None when the date is not a real calendar day. A missing or
    unreadable time falls back to midnight.
    """
    date_match = _DATE.match(day or "")
    if not date_match:
        return None
    hour = minute = second = 0
    time_match = _TIME.match(clock or "")
    if time_match:
        hour = int(time_match.group(1))
        minute = int(time_match.group(2))
        second = int(time_match.group(3) or 0)
    try:
        day_start = datetime(
            int(date_match.group(1)), int(date_match.group(2)), int(date_match.group(3))
        )
    except ValueError:
        return None
    try:
        return day_start.replace(hour=hour, minute=minute, second=second)
    except ValueError:
        return day_start


def show_name_prefix(item_name: str) -> str:
    """Show name from an episode title like "Show - s01e02 - Title"."""
    prefix = item_name.split(SEPARATOR, 1)[0]
    return prefix or item_name


def slugify(name: str) -> str:
    return _WHITESPACE.sub("_", name.lower())


def split_track(item_name: str) -> tuple[str, str]:
    """(artist, title) from an audio item named "Artist - Title"."""
    if SEPARATOR not in item_name:
        return UNKNOWN_ARTIST, item_name
    artist, _, title = item_name.partition(SEPARATOR)
    return artist or UNKNOWN_ARTIST, title


@dataclass(frozen=True)
class SeriesIdentity:
    series_id: str

    @property
    def key(self) -> str:
        return self.series_id


@dataclass(frozen=True)
class NameSlugIdentity:
    slug: str

    @property
    def key(self) -> str:
        return self.slug


ShowIdentity = Union[SeriesIdentity, NameSlugIdentity]


def resolve_show_identity(event: PlaybackEvent, item: Optional[CatalogItem]) -> ShowIdentity:
    """Catalog series link when present, otherwise a slug of the episode's show name."""
    if item is not None and item.series_id:
        return SeriesIdentity(item.series_id)
    return NameSlugIdentity(slugify(show_name_prefix(event.item_name)))


@dataclass
class Play:
    """A playback event that fell inside the requested range."""

    event: PlaybackEvent
    timestamp: datetime
    seconds: int

    @property
    def minutes(self) -> float:
        return self.seconds / 60

    @property
    def kind(self) -> str:
        return self.event.item_type.lower()


@dataclass
class AggregationGroup:
    key: str
    name: str
    minutes: float = 0.0
    count: int = 0
    episode_ids: set[str] = field(default_factory=set)
    series_id: Optional[str] = None

    def add(self, minutes: float, episode_id: Optional[str] = None) -> None:
        self.minutes += minutes
        self.count += 1
        if episode_id is not None:
            self.episode_ids.add(episode_id)


@dataclass
class EpisodePlay:
    play: Play
    identity: ShowIdentity
    item: Optional[CatalogItem]


@dataclass
class VideoBreakdown:
    plays: list[Play] = field(default_factory=list)
    movies: dict[str, AggregationGroup] = field(default_factory=dict)
    shows: dict[str, AggregationGroup] = field(default_factory=dict)
    genre_minutes: dict[str, float] = field(default_factory=dict)
    episodes: list[EpisodePlay] = field(default_factory=list)

    @property
    def movie_minutes(self) -> float:
        return sum(group.minutes for group in self.movies.values())

    @property
    def episode_minutes(self) -> float:
        return sum(group.minutes for group in self.shows.values())


def select_plays(events: Iterable[PlaybackEvent], time_range: TimeRange) -> list[Play]:
    plays = []
    for event in events:
        if not time_range.matches(event.date):
            continue
        timestamp = parse_timestamp(event.date, event.time)
        if timestamp is None:
            continue
        plays.append(Play(event, timestamp, parse_duration_seconds(event.duration)))
    return plays


def partition_plays(plays: Iterable[Play]) -> tuple[list[Play], list[Play]]:
    """Split plays into (video, audio). Music videos belong to neither."""
    video: list[Play] = []
    audio: list[Play] = []
    for play in plays:
        if play.kind == "audio":
            audio.append(play)
        elif play.kind not in NON_VIDEO_TYPES:
            video.append(play)
    return video, audio


def index_catalog(items: Iterable[CatalogItem]) -> dict[str, CatalogItem]:
    return {item.id: item for item in items}


def group_video(video: Iterable[Play], catalog: Mapping[str, CatalogItem]) -> VideoBreakdown:
    """Accumulate accessible video plays per movie, per show and per genre.

    Plays whose item is missing from the catalog are invisible to the
    filtering identity and are dropped here.
    """
    breakdown = VideoBreakdown()
    for play in video:
        item_id = play.event.item_id
        item = catalog.get(item_id)
        if item is None:
            continue
        breakdown.plays.append(play)
        minutes = play.minutes

        if play.kind == "movie":
            group = breakdown.movies.get(item_id)
            if group is None:
                group = breakdown.movies[item_id] = AggregationGroup(item_id, play.event.item_name)
            group.add(minutes)
        elif play.kind == "episode":
            identity = resolve_show_identity(play.event, item)
            group = breakdown.shows.get(identity.key)
            if group is None:
                group = breakdown.shows[identity.key] = AggregationGroup(
                    identity.key,
                    item.series_name or show_name_prefix(play.event.item_name),
                    series_id=item.series_id,
                )
            group.add(minutes, episode_id=item_id)
            if item.series_id and not group.series_id:
                group.series_id = item.series_id
            breakdown.episodes.append(EpisodePlay(play, identity, item))
        else:
            continue

        for genre in item.genres:
            breakdown.genre_minutes[genre] = breakdown.genre_minutes.get(genre, 0.0) + minutes
    return breakdown


def rank_groups(
    groups: Iterable[AggregationGroup], limit: int, by_count: bool = False
) -> list[AggregationGroup]:
    if by_count:
        return sorted(groups, key=lambda g: g.count, reverse=True)[:limit]
    return sorted(groups, key=lambda g: g.minutes, reverse=True)[:limit]


def default_image_url(item_id: str) -> str:
    return f"/Items/{item_id}/Images/Primary?maxWidth=400"


def build_top_movies(
    movies: Mapping[str, AggregationGroup],
    image_url: Callable[[str], str] = default_image_url,
    limit: int = TOP_TITLES,
) -> list[TopItem]:
    return [
        TopItem(
            id=group.key,
            name=group.name,
            image_url=image_url(group.key),
            minutes=round_half_up(group.minutes),
            count=group.count,
        )
        for group in rank_groups(movies.values(), limit)
    ]


def _show_artwork_id(group: AggregationGroup, catalog: Mapping[str, CatalogItem]) -> str:
    if group.series_id:
        return group.series_id
    for item in catalog.values():
        if item.series_id and (item.series_name == group.name or item.series_id == group.key):
            return item.series_id
    return group.key


def build_top_shows(
    shows: Mapping[str, AggregationGroup],
    catalog: Mapping[str, CatalogItem],
    image_url: Callable[[str], str] = default_image_url,
    limit: int = TOP_TITLES,
) -> list[TopItem]:
    top = []
    for group in rank_groups(shows.values(), limit):
        artwork_id = _show_artwork_id(group, catalog)
        top.append(
            TopItem(
                id=group.key,
                name=group.name,
                image_url=image_url(artwork_id),
                minutes=round_half_up(group.minutes),
                count=group.count,
                episodes=len(group.episode_ids),
                series_id=artwork_id,
            )
        )
    return top


def rank_genres(genre_minutes: Mapping[str, float]) -> list[tuple[str, float]]:
    limit = max(MIN_TOP_GENRES, min(MAX_TOP_GENRES, len(genre_minutes)))
    return sorted(genre_minutes.items(), key=lambda entry: entry[1], reverse=True)[:limit]


def total_genre_minutes(genre_minutes: Mapping[str, float]) -> float:
    # Floor of 1 keeps percentages defined when nothing carried a genre
    return sum(genre_minutes.values()) or 1


def build_top_genres(genre_minutes: Mapping[str, float]) -> list[GenreStat]:
    total = total_genre_minutes(genre_minutes)
    return [
        GenreStat(
            name=name,
            minutes=round_half_up(minutes),
            percentage=round_half_up(minutes / total * 100),
        )
        for name, minutes in rank_genres(genre_minutes)
    ]


def diversity_index(values: Iterable[float], total: Optional[float] = None) -> float:
    """1 - sum of squared shares: 0 when concentrated, approaching 1 when spread."""
    values = list(values)
    if total is None:
        total = sum(values)
    if not values or total <= 0:
        return 0.0
    return 1 - sum((value / total) ** 2 for value in values)


def movie_to_tv_ratio(breakdown: VideoBreakdown) -> float:
    if not breakdown.shows:
        return MOVIE_ONLY_RATIO if breakdown.movies else 0.0
    return round2(breakdown.movie_minutes / max(1.0, breakdown.episode_minutes))


@dataclass
class Heatmap:
    hours: list[float] = field(default_factory=lambda: [0.0] * 24)
    days: list[float] = field(default_factory=lambda: [0.0] * 7)
    months: list[float] = field(default_factory=lambda: [0.0] * 12)

    def add(self, timestamp: datetime, minutes: float) -> None:
        self.hours[timestamp.hour] += minutes
        # datetime.weekday() has Monday as 0; buckets start on Sunday
        self.days[(timestamp.weekday() + 1) % 7] += minutes
        self.months[timestamp.month - 1] += minutes

    def rounded(self) -> HeatmapData:
        return HeatmapData(
            hours=tuple(round_half_up(v) for v in self.hours),
            days=tuple(round_half_up(v) for v in self.days),
            months=tuple(round_half_up(v) for v in self.months),
        )


def build_heatmap(plays: Iterable[Play]) -> Heatmap:
    heatmap = Heatmap()
    for play in plays:
        heatmap.add(play.timestamp, play.minutes)
    return heatmap


def peak_index(values: list[float]) -> int:
    """Index of the largest bucket; the earliest wins a tie."""
    return values.index(max(values))


@dataclass(frozen=True)
class PersonalityFlags:
    night_owl: bool
    early_bird: bool
    weekend_warrior: bool


def personality_flags(heatmap: Heatmap, total_minutes: float) -> PersonalityFlags:
    hours, days = heatmap.hours, heatmap.days
    night = sum(hours[21:24]) + sum(hours[0:3])
    morning = sum(hours[5:10])
    weekend = days[0] + days[6]
    weekday = sum(days[1:6])
    return PersonalityFlags(
        night_owl=total_minutes > 0 and night > total_minutes * NIGHT_OWL_SHARE,
        early_bird=total_minutes > 0 and morning > total_minutes * EARLY_BIRD_SHARE,
        weekend_warrior=weekday > 0 and weekend > weekday * (2 / 5) * WEEKEND_FACTOR,
    )


def detect_binges(episodes: Iterable[EpisodePlay]) -> list[BingeSession]:
    """Same-show episode runs on one calendar day, in first-seen order."""
    by_day_and_show: dict[tuple[str, str], list[EpisodePlay]] = {}
    for episode in episodes:
        day = episode.play.timestamp.date().isoformat()
        by_day_and_show.setdefault((day, episode.identity.key), []).append(episode)

    sessions = []
    for (_, show_id), group in by_day_and_show.items():
        # A rewatched episode counts once; the later play replaces the earlier
        unique: dict[str, EpisodePlay] = {}
        for episode in group:
            unique[episode.play.event.item_id] = episode
        if len(unique) < BINGE_MIN_EPISODES:
            continue

        ordered = sorted(unique.values(), key=lambda e: e.play.timestamp)
        total_minutes = round_half_up(sum(e.play.seconds for e in ordered) / 60)
        if total_minutes / len(ordered) < BINGE_MIN_AVG_MINUTES:
            continue

        first = group[0]
        show_name = (first.item and first.item.series_name) or show_name_prefix(
            first.play.event.item_name
        )
        sessions.append(
            BingeSession(
                show_name=show_name,
                show_id=show_id,
                episode_count=len(ordered),
                start_time=ordered[0].play.timestamp.isoformat(),
                end_time=ordered[-1].play.timestamp.isoformat(),
                total_minutes=total_minutes,
            )
        )
    return sessions


def longest_binge(sessions: Iterable[BingeSession]) -> Optional[BingeSession]:
    plausible = [s for s in sessions if s.episode_count <= BINGE_MAX_EPISODES]
    if not plausible:
        return None
    return max(plausible, key=lambda s: s.episode_count)


def _marker(play: Play) -> WatchMarker:
    event = play.event
    return WatchMarker(id=event.item_id, name=event.item_name, date=event.date, type=event.item_type)


def first_and_last(plays: Iterable[Play]) -> tuple[Optional[WatchMarker], Optional[WatchMarker]]:
    ordered = sorted(plays, key=lambda p: p.timestamp)
    if not ordered:
        return None, None
    return _marker(ordered[0]), _marker(ordered[-1])


@dataclass
class MusicBreakdown:
    plays: list[Play]
    artists: dict[str, AggregationGroup] = field(default_factory=dict)
    tracks: dict[tuple[str, str], AggregationGroup] = field(default_factory=dict)

    @property
    def total_minutes(self) -> int:
        return round_half_up(sum(p.seconds for p in self.plays) / 60)


def group_audio(audio: Iterable[Play]) -> MusicBreakdown:
    breakdown = MusicBreakdown(plays=list(audio))
    for play in breakdown.plays:
        artist, title = split_track(play.event.item_name)
        if artist not in breakdown.artists:
            breakdown.artists[artist] = AggregationGroup(artist, artist)
        breakdown.artists[artist].add(play.minutes)
        track_key = (artist, title)
        if track_key not in breakdown.tracks:
            breakdown.tracks[track_key] = AggregationGroup(title, title)
        breakdown.tracks[track_key].add(play.minutes)
    return breakdown


def _artist_stats(groups: list[AggregationGroup]) -> list[ArtistStat]:
    return [
        ArtistStat(name=g.name, minutes=round_half_up(g.minutes), count=g.count) for g in groups
    ]


def _track_stats(
    tracks: Mapping[tuple[str, str], AggregationGroup], limit: int, by_count: bool
) -> list[TrackStat]:
    if by_count:
        ranked = sorted(tracks.items(), key=lambda entry: entry[1].count, reverse=True)
    else:
        ranked = sorted(tracks.items(), key=lambda entry: entry[1].minutes, reverse=True)
    return [
        TrackStat(
            name=group.name,
            artist=artist,
            minutes=round_half_up(group.minutes),
            count=group.count,
        )
        for (artist, _), group in ranked[:limit]
    ]


def build_music_summary(breakdown: MusicBreakdown) -> MusicStats:
    """Compact summary: top artists by minutes, top tracks by play count."""
    return MusicStats(
        total_minutes=breakdown.total_minutes,
        track_count=len(breakdown.plays),
        top_artists=_artist_stats(rank_groups(breakdown.artists.values(), COMPACT_TOP_ARTISTS)),
        top_tracks=_track_stats(breakdown.tracks, COMPACT_TOP_TRACKS, by_count=True),
    )


def _generated_at(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def aggregate_user_stats(
    user_id: str,
    username: str,
    events: Iterable[PlaybackEvent],
    catalog: Mapping[str, CatalogItem],
    time_range: TimeRange,
    *,
    image_url: Callable[[str], str] = default_image_url,
    now: Optional[datetime] = None,
) -> UserStats:
    """Build a user's report for one time range from raw events and catalog items."""
    video, audio = partition_plays(select_plays(events, time_range))
    breakdown = group_video(video, catalog)
    logger.debug(
        f"Aggregating {len(breakdown.plays)} of {len(video)} video plays "
        f"and {len(audio)} audio plays for {username}"
    )

    total_seconds = sum(play.seconds for play in breakdown.plays)
    total_minutes = round_half_up(total_seconds / 60)

    heatmap = build_heatmap(breakdown.plays)
    flags = personality_flags(heatmap, total_minutes)

    genre_total = total_genre_minutes(breakdown.genre_minutes)
    ranked_genres = rank_genres(breakdown.genre_minutes)
    top_genres = build_top_genres(breakdown.genre_minutes)

    binges = detect_binges(breakdown.episodes)
    first_watch, last_watch = first_and_last(breakdown.plays)

    music = build_music_summary(group_audio(audio)) if audio else None

    return UserStats(
        user_id=user_id,
        username=username,
        year=time_range.year,
        time_range=to_canonical_string(time_range),
        time_range_label=format_label(time_range),
        generated_at=_generated_at(now),
        total_minutes=total_minutes,
        total_days=round2(total_minutes / 1440),
        movies_watched=len(breakdown.movies),
        episodes_watched=len(breakdown.episodes),
        unique_shows=len(breakdown.shows),
        unique_movies=len(breakdown.movies),
        top_movies=build_top_movies(breakdown.movies, image_url),
        top_shows=build_top_shows(breakdown.shows, catalog, image_url),
        top_genres=top_genres,
        total_genres=len(breakdown.genre_minutes),
        heatmap=heatmap.rounded(),
        peak_hour=peak_index(heatmap.hours),
        peak_day=peak_index(heatmap.days),
        peak_month=peak_index(heatmap.months),
        is_night_owl=flags.night_owl,
        is_early_bird=flags.early_bird,
        is_weekend_warrior=flags.weekend_warrior,
        longest_binge=longest_binge(binges),
        binge_count=len(binges),
        first_watch=first_watch,
        last_watch=last_watch,
        music=music,
        primary_genre=top_genres[0].name if top_genres else None,
        secondary_genre=top_genres[1].name if len(top_genres) > 1 else None,
        genre_diversity=round2(
            diversity_index((minutes for _, minutes in ranked_genres), total=genre_total)
        ),
        movie_to_tv_ratio=movie_to_tv_ratio(breakdown),
    )


def aggregate_music_stats(
    user_id: str,
    username: str,
    events: Iterable[PlaybackEvent],
    time_range: TimeRange,
    *,
    now: Optional[datetime] = None,
) -> FullMusicStats:
    """Standalone music report; top tracks here rank by minutes, not play count."""
    _, audio = partition_plays(select_plays(events, time_range))
    breakdown = group_audio(audio)
    heatmap = build_heatmap(breakdown.plays)
    return FullMusicStats(
        user_id=user_id,
        username=username,
        time_range=to_canonical_string(time_range),
        time_range_label=format_label(time_range),
        generated_at=_generated_at(now),
        total_minutes=breakdown.total_minutes,
        track_count=len(breakdown.plays),
        unique_artists=len(breakdown.artists),
        unique_tracks=len(breakdown.tracks),
        top_artists=_artist_stats(rank_groups(breakdown.artists.values(), FULL_TOP_ARTISTS)),
        top_tracks=_track_stats(breakdown.tracks, FULL_TOP_TRACKS, by_count=False),
        heatmap=heatmap.rounded(),
        peak_hour=peak_index(heatmap.hours),
        artist_diversity=round2(
            diversity_index(group.minutes for group in breakdown.artists.values())
        ),
    )
