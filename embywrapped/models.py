from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class PlaybackEvent(BaseModel):
    """One row of the Playback Reporting plugin's UserPlaylist feed."""

    model_config = ConfigDict(frozen=True)

    date: str = ""
    time: str = ""
    user_id: str = ""
    user_name: Optional[str] = None
    item_id: str = ""
    item_name: str = ""
    item_type: str = ""
    duration: Optional[str] = None
    remote_address: Optional[str] = None

    @field_validator(
        "date", "time", "user_id", "item_id", "item_name", "item_type", mode="before"
    )
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("duration", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)


class CatalogItem(BaseModel):
    """Item metadata as returned by a permission-scoped Emby items query."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias="Id")
    name: str = Field(default="", alias="Name")
    type: str = Field(default="", alias="Type")
    genres: list[str] = Field(default_factory=list, alias="Genres")
    series_id: Optional[str] = Field(default=None, alias="SeriesId")
    series_name: Optional[str] = Field(default=None, alias="SeriesName")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("genres", mode="before")
    @classmethod
    def _clean_genres(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(genre) for genre in value if genre]


class EmbyUser(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias="Id")
    name: str = Field(alias="Name")


class ReportModel(BaseModel):
    """Base for report values: frozen, camelCase on the wire."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


class TopItem(ReportModel):
    id: str
    name: str
    image_url: str
    tmdb_image_url: Optional[str] = None
    minutes: int
    count: int
    episodes: Optional[int] = None
    series_id: Optional[str] = None


class GenreStat(ReportModel):
    name: str
    minutes: int
    percentage: int


class HeatmapData(ReportModel):
    hours: tuple[int, ...]
    days: tuple[int, ...]
    months: tuple[int, ...]


class BingeSession(ReportModel):
    show_name: str
    show_id: str
    episode_count: int
    start_time: str
    end_time: str
    total_minutes: int


class WatchMarker(ReportModel):
    id: str
    name: str
    date: str
    type: str


class ArtistStat(ReportModel):
    name: str
    minutes: int
    count: int


class TrackStat(ReportModel):
    name: str
    artist: str
    minutes: int
    count: int


class MusicStats(ReportModel):
    """Compact music summary embedded in a user's report."""

    total_minutes: int
    track_count: int
    top_artists: list[ArtistStat]
    top_tracks: list[TrackStat]


class FullMusicStats(ReportModel):
    """Standalone music report."""

    user_id: str
    username: str
    time_range: str
    time_range_label: str
    generated_at: datetime
    total_minutes: int
    track_count: int
    unique_artists: int
    unique_tracks: int
    top_artists: list[ArtistStat]
    top_tracks: list[TrackStat]
    heatmap: HeatmapData
    peak_hour: int
    artist_diversity: float


class UserStats(ReportModel):
    """A user's assembled year (or month) in review."""

    user_id: str
    username: str
    year: Optional[int]
    time_range: str
    time_range_label: str
    generated_at: datetime

    total_minutes: int
    total_days: float

    movies_watched: int
    episodes_watched: int
    unique_shows: int
    unique_movies: int

    top_movies: list[TopItem]
    top_shows: list[TopItem]
    top_genres: list[GenreStat]
    total_genres: int

    heatmap: HeatmapData
    peak_hour: int
    peak_day: int
    peak_month: int

    is_night_owl: bool
    is_early_bird: bool
    is_weekend_warrior: bool

    longest_binge: Optional[BingeSession] = None
    binge_count: int

    first_watch: Optional[WatchMarker] = None
    last_watch: Optional[WatchMarker] = None

    music: Optional[MusicStats] = None

    primary_genre: Optional[str] = None
    secondary_genre: Optional[str] = None
    genre_diversity: float
    movie_to_tv_ratio: float


class ServerStats(ReportModel):
    """Server-wide rollup across every user."""

    time_range: str
    generated_at: datetime
    total_users: int
    active_users: int
    total_minutes: int
    total_movies: int
    total_episodes: int
    peak_month: int
    monthly_minutes: tuple[int, ...]
    top_shows: list[TopItem]
    top_movies: list[TopItem]


class TimeRangeOption(ReportModel):
    value: str
    label: str


class Personality(ReportModel):
    label: str
    unicode: Optional[str] = None
    tagline: str


class WrappedHighlights(ReportModel):
    """Display strings for the headline numbers of a wrapped report."""

    total_time: str
    total_minutes: str
    peak_hour: str
    peak_day: str
    peak_month: str
    first_watch_date: Optional[str] = None
    last_watch_date: Optional[str] = None
    day_labels: list[str]
    month_labels: list[str]


class WrappedPage(ReportModel):
    """Everything the wrapped page needs for one user and range."""

    stats: UserStats
    user_image_url: str
    server_name: str
    current_time_range: str
    time_range_options: list[TimeRangeOption]
    personality: Personality
    day_personality: Personality
    time_comparison: str
    highlights: WrappedHighlights
