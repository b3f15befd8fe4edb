import asyncio
import hashlib
import ipaddress
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import httpx

from .config import settings

logger = logging.getLogger(__name__)

ALLOWED_DOMAINS = ["image.tmdb.org", "www.themoviedb.org"]


def is_allowed_url(url: str, emby_url: Optional[str] = None) -> bool:
    """Only proxy TMDB images, the configured Emby server and private-network hosts."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    hostname = (parsed.hostname or "").lower()
    if not hostname:
        return False

    if any(hostname == domain or hostname.endswith("." + domain) for domain in ALLOWED_DOMAINS):
        return True

    emby_url = settings.emby_url if emby_url is None else emby_url
    if emby_url and hostname == (urlparse(emby_url).hostname or "").lower():
        return True

    if hostname == "localhost":
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_private or address.is_loopback


@dataclass
class ProxiedImage:
    content: bytes
    content_type: str
    cache_hit: bool = False


class ImageFetchError(Exception):
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class ImageProxy:
    """Fetches remote images through a disk cache keyed by the URL's md5."""

    def __init__(self, cache_dir: Optional[Path] = None):
        self.cache_dir = Path(cache_dir or settings.image_cache_dir)

    def _paths(self, url: str) -> tuple[Path, Path]:
        key = hashlib.md5(url.encode("utf-8")).hexdigest()
        image_path = self.cache_dir / key
        return image_path, image_path.with_name(key + ".meta")

    def _read_cache(self, url: str) -> Optional[ProxiedImage]:
        image_path, meta_path = self._paths(url)
        if not (image_path.exists() and meta_path.exists()):
            return None
        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
            content = image_path.read_bytes()
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable image cache entry for {url}: {e}")
            return None
        return ProxiedImage(content, meta.get("contentType") or "image/jpeg", cache_hit=True)

    def _write_cache(self, url: str, image: ProxiedImage) -> None:
        image_path, meta_path = self._paths(url)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            image_path.write_bytes(image.content)
            meta_path.write_text(
                json.dumps({"contentType": image.content_type, "url": url}), encoding="utf-8"
            )
        except OSError as e:
            logger.error(f"Failed to write image cache: {e}")

    async def fetch(self, url: str) -> ProxiedImage:
        cached = await asyncio.to_thread(self._read_cache, url)
        if cached is not None:
            return cached

        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    url, timeout=settings.http_timeout_seconds, follow_redirects=False
                )
        except httpx.HTTPError as e:
            raise ImageFetchError(f"Failed to fetch image: {e}") from e

        if response.status_code != 200:
            raise ImageFetchError("Failed to fetch image", status_code=response.status_code)

        image = ProxiedImage(
            content=response.content,
            content_type=response.headers.get("content-type") or "image/jpeg",
        )
        await asyncio.to_thread(self._write_cache, url, image)
        return image


# Global proxy instance
image_proxy = ImageProxy()
