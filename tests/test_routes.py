from datetime import datetime, timezone

from fastapi.testclient import TestClient

import dashboard.routes as routes_module
from dashboard.app import app
from embywrapped.emby_client import EmbyError, UserNotFoundError
from embywrapped.format import build_highlights, get_day_personality, get_viewing_personality
from embywrapped.images import ImageFetchError, ProxiedImage
from embywrapped.models import EmbyUser, ServerStats, WrappedPage
from embywrapped.stats import aggregate_music_stats, aggregate_user_stats
from embywrapped.timerange import available_time_ranges, parse_time_range

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _page() -> WrappedPage:
    stats = aggregate_user_stats("user-1", "Test User", [], {}, parse_time_range("2025"), now=NOW)
    return WrappedPage(
        stats=stats,
        user_image_url="http://emby/Users/user-1",
        server_name="Test Server",
        current_time_range="2025",
        time_range_options=available_time_ranges(),
        personality=get_viewing_personality(False, False, False),
        day_personality=get_day_personality(0),
        time_comparison="About 1 feature film",
        highlights=build_highlights(stats),
    )


class _DummyService:
    def __init__(self, error=None):
        self.error = error
        self.requested = []

    def resolve_range(self, value):
        return parse_time_range(value or "2025")

    async def validate_user(self, username):
        if self.error:
            raise self.error
        if username == "Test User":
            return EmbyUser(Id="user-1", Name="Test User")
        return None

    async def get_wrapped_page(self, user_id, time_range_value):
        self.requested.append((user_id, time_range_value))
        if self.error:
            raise self.error
        return _page()

    async def get_user_music(self, user_id, time_range_value):
        if self.error:
            raise self.error
        return aggregate_music_stats(user_id, "Test User", [], parse_time_range("2025"), now=NOW)


class _DummyServerStats:
    def __init__(self):
        self.ranges = []

    async def build(self, time_range):
        self.ranges.append(time_range)
        return ServerStats(
            time_range="2025",
            generated_at=NOW,
            total_users=2,
            active_users=1,
            total_minutes=90,
            total_movies=1,
            total_episodes=1,
            peak_month=2,
            monthly_minutes=(0,) * 12,
            top_shows=[],
            top_movies=[],
        )


class _DummyImageProxy:
    def __init__(self, error=None):
        self.error = error

    async def fetch(self, url):
        if self.error:
            raise self.error
        return ProxiedImage(b"png-bytes", "image/png", cache_hit=True)


class _DummyReportCache:
    async def count(self):
        raise RuntimeError("Report cache not connected")


def _client(monkeypatch, service=None, server_stats=None, image_proxy=None) -> TestClient:
    monkeypatch.setattr(routes_module, "wrapped_service", service or _DummyService())
    monkeypatch.setattr(routes_module, "server_stats_builder", server_stats or _DummyServerStats())
    monkeypatch.setattr(routes_module, "image_proxy", image_proxy or _DummyImageProxy())
    monkeypatch.setattr(routes_module, "report_cache", _DummyReportCache())
    return TestClient(app)


def test_index_lists_time_ranges(monkeypatch):
    response = _client(monkeypatch).get("/")
    assert response.status_code == 200
    options = response.json()["timeRangeOptions"]
    assert options[0]["label"].endswith("(Full Year)")


def test_validate_user(monkeypatch):
    client = _client(monkeypatch)

    response = client.get("/api/validate-user", params={"username": " Test User "})
    assert response.status_code == 200
    assert response.json() == {"valid": True, "userId": "user-1", "username": "Test User"}

    response = client.get("/api/validate-user", params={"username": "stranger"})
    assert response.status_code == 200
    assert response.json()["valid"] is False

    response = client.get("/api/validate-user")
    assert response.status_code == 400


def test_validate_user_upstream_failure(monkeypatch):
    client = _client(monkeypatch, service=_DummyService(error=EmbyError("down", 502)))
    response = client.get("/api/validate-user", params={"username": "Test User"})
    assert response.status_code == 500
    assert response.json()["error"] == "Failed to connect to Emby server"


def test_wrapped_route(monkeypatch):
    service = _DummyService()
    response = _client(monkeypatch, service=service).get(
        "/api/users/user-1/wrapped", params={"range": "2025"}
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["stats"]["userId"] == "user-1"
    assert payload["stats"]["heatmap"]["hours"] == [0] * 24
    assert payload["serverName"] == "Test Server"
    assert payload["highlights"]["totalTime"] == "0 minutes"
    assert payload["highlights"]["monthLabels"][0] == "Jan"
    assert service.requested == [("user-1", "2025")]


def test_wrapped_route_unknown_user(monkeypatch):
    client = _client(monkeypatch, service=_DummyService(error=UserNotFoundError("gone", 404)))
    response = client.get("/api/users/missing/wrapped")
    assert response.status_code == 404


def test_wrapped_route_upstream_failure(monkeypatch):
    client = _client(monkeypatch, service=_DummyService(error=EmbyError("down", 500)))
    response = client.get("/api/users/user-1/wrapped")
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to load your wrapped data"


def test_music_route(monkeypatch):
    response = _client(monkeypatch).get("/api/users/user-1/music")
    assert response.status_code == 200
    assert response.json()["trackCount"] == 0


def test_server_stats_route(monkeypatch):
    builder = _DummyServerStats()
    response = _client(monkeypatch, server_stats=builder).get(
        "/api/server-stats", params={"range": "2025-03"}
    )
    assert response.status_code == 200
    assert response.json()["totalMinutes"] == 90
    assert builder.ranges[0].month == 3


def test_music_tracks(monkeypatch, tmp_path):
    (tmp_path / "b.mp3").write_bytes(b"")
    (tmp_path / "a.mp3").write_bytes(b"")
    (tmp_path / "notes.txt").write_text("ignored")
    monkeypatch.setattr(routes_module.settings, "music_dir", str(tmp_path))

    response = _client(monkeypatch).get("/api/music")
    assert response.json() == {"tracks": ["/music/a.mp3", "/music/b.mp3"]}


def test_music_tracks_missing_directory(monkeypatch, tmp_path):
    monkeypatch.setattr(routes_module.settings, "music_dir", str(tmp_path / "missing"))
    response = _client(monkeypatch).get("/api/music")
    assert response.json() == {"tracks": []}


def test_proxy_image(monkeypatch):
    client = _client(monkeypatch)

    response = client.get("/api/proxy-image", params={"url": "https://image.tmdb.org/t/p/a.jpg"})
    assert response.status_code == 200
    assert response.content == b"png-bytes"
    assert response.headers["content-type"] == "image/png"
    assert response.headers["x-cache"] == "HIT"

    assert client.get("/api/proxy-image").status_code == 400
    forbidden = client.get("/api/proxy-image", params={"url": "https://evil.example.org/a.jpg"})
    assert forbidden.status_code == 403


def test_proxy_image_upstream_status(monkeypatch):
    client = _client(monkeypatch, image_proxy=_DummyImageProxy(ImageFetchError("nope", 404)))
    response = client.get("/api/proxy-image", params={"url": "https://image.tmdb.org/t/p/a.jpg"})
    assert response.status_code == 404


def test_health_route(monkeypatch):
    response = _client(monkeypatch).get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_route(monkeypatch):
    response = _client(monkeypatch).get("/metrics")
    assert response.status_code == 200
    assert "embywrapped_cached_reports" in response.text
