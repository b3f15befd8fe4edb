import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from embywrapped.config import settings
from embywrapped.emby_client import EmbyError, UserNotFoundError
from embywrapped.images import ImageFetchError, image_proxy, is_allowed_url
from embywrapped.metrics import CACHED_REPORTS
from embywrapped.report_cache import report_cache
from embywrapped.server_stats import server_stats_builder
from embywrapped.service import wrapped_service
from embywrapped.timerange import available_time_ranges

logger = logging.getLogger(__name__)

router = APIRouter()

IMAGE_CACHE_CONTROL = "public, max-age=31536000, immutable"


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


@router.get("/")
async def index():
    """Selectable time ranges for the landing page."""
    return {
        "serverName": settings.server_name,
        "timeRangeOptions": [_dump(option) for option in available_time_ranges()],
    }


@router.get("/api/validate-user")
async def validate_user(username: Optional[str] = None):
    if not username or not username.strip():
        return JSONResponse({"valid": False, "error": "Username is required"}, status_code=400)

    try:
        user = await wrapped_service.validate_user(username.strip())
    except EmbyError as e:
        logger.error(f"Error validating user: {e}")
        return JSONResponse(
            {"valid": False, "error": "Failed to connect to Emby server"}, status_code=500
        )

    if user is None:
        return {"valid": False, "error": "User not found on this server"}
    return {"valid": True, "userId": user.id, "username": user.name}


@router.get("/api/users/{user_id}/wrapped")
async def user_wrapped(user_id: str, range: Optional[str] = None):
    """Full wrapped page for one user and time range."""
    try:
        page = await wrapped_service.get_wrapped_page(user_id, range)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except EmbyError as e:
        logger.error(f"Error loading wrapped data for {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load your wrapped data")
    return _dump(page)


@router.get("/api/users/{user_id}/music")
async def user_music(user_id: str, range: Optional[str] = None):
    try:
        music = await wrapped_service.get_user_music(user_id, range)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except EmbyError as e:
        logger.error(f"Error loading music stats for {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load music stats")
    return _dump(music)


@router.get("/api/server-stats")
async def server_stats(range: Optional[str] = None):
    """Server-wide rollup across all users."""
    time_range = wrapped_service.resolve_range(range)
    try:
        stats = await server_stats_builder.build(time_range)
    except EmbyError as e:
        logger.error(f"Error fetching server stats: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch server stats")
    return _dump(stats)


@router.get("/api/music")
async def music_tracks():
    """Background tracks available under the music directory."""
    music_dir = Path(settings.music_dir)
    try:
        if not music_dir.is_dir():
            return {"tracks": []}
        tracks = sorted(f"/music/{path.name}" for path in music_dir.glob("*.mp3"))
    except OSError as e:
        logger.error(f"Error reading music directory: {e}")
        return {"tracks": []}
    return {"tracks": tracks}


@router.get("/api/proxy-image")
async def proxy_image(url: Optional[str] = None):
    if not url:
        return PlainTextResponse("Missing url parameter", status_code=400)
    if not is_allowed_url(url):
        return PlainTextResponse("Forbidden: URL not in allowed domains", status_code=403)

    try:
        image = await image_proxy.fetch(url)
    except ImageFetchError as e:
        return PlainTextResponse(str(e), status_code=e.status_code)

    return Response(
        content=image.content,
        media_type=image.content_type,
        headers={
            "Cache-Control": IMAGE_CACHE_CONTROL,
            "Access-Control-Allow-Origin": "*",
            "X-Cache": "HIT" if image.cache_hit else "MISS",
        },
    )


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "emby_url": settings.emby_base_url}


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    try:
        CACHED_REPORTS.set(await report_cache.count())
    except RuntimeError:
        CACHED_REPORTS.set(0)
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
