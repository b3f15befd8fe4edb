from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    emby_url: str = "http://localhost:8096"
    emby_api_key: str = ""
    tmdb_api_key: str = ""
    server_name: str = "Emby for the People"
    # User whose library permissions gate which items count towards reports
    filter_user_id: Optional[str] = None
    cache_path: str = "./data/wrapped-cache.db"
    stats_cache_ttl_minutes: int = 60
    server_stats_ttl_minutes: int = 5
    image_cache_dir: str = "./data/image-cache"
    music_dir: str = "./static/music"
    dashboard_port: int = 8085
    item_batch_size: int = 50
    max_catalog_items: int = 500
    user_batch_size: int = 10
    http_timeout_seconds: float = 30.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def emby_base_url(self) -> str:
        """Get the Emby URL without a trailing slash."""
        return self.emby_url.rstrip("/")

    @property
    def cache_path_resolved(self) -> Path:
        """Get resolved report cache path."""
        path = Path(self.cache_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


settings = Settings()
