from embywrapped.config import Settings


def test_emby_base_url_strips_trailing_slash():
    settings = Settings(
        emby_url="http://example.test:8096/",
        emby_api_key="abc123",
    )
    assert settings.emby_base_url == "http://example.test:8096"


def test_cache_path_resolved_creates_parent(tmp_path):
    target = tmp_path / "nested" / "cache.db"
    settings = Settings(cache_path=str(target))
    assert settings.cache_path_resolved == target
    assert target.parent.is_dir()


def test_defaults():
    settings = Settings(emby_api_key="abc123")
    assert settings.stats_cache_ttl_minutes == 60
    assert settings.server_stats_ttl_minutes == 5
    assert settings.item_batch_size == 50
    assert settings.user_batch_size == 10
