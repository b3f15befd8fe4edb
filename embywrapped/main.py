import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

import uvicorn

from .config import settings
from .emby_client import EmbyError
from .report_cache import MemoryReportCache, report_cache
from .service import WrappedService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class WrappedServer:
    def __init__(self):
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the Emby Wrapped server."""
        logger.info("Starting Emby Wrapped...")

        # Connect to report cache
        await report_cache.connect()
        logger.info(f"Connected to report cache: {settings.cache_path}")

        # Setup signal handlers
        loop = asyncio.get_event_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(self.shutdown()))

        web_task = asyncio.create_task(self._run_web_server())
        prune_task = asyncio.create_task(self._run_cache_pruner())

        logger.info(f"Dashboard available at http://localhost:{settings.dashboard_port}")

        # Wait for shutdown
        await self._shutdown_event.wait()

        web_task.cancel()
        prune_task.cancel()

        try:
            await web_task
        except asyncio.CancelledError:
            pass
        try:
            await prune_task
        except asyncio.CancelledError:
            pass

        # Cleanup
        await report_cache.close()
        logger.info("Emby Wrapped stopped")

    async def shutdown(self) -> None:
        """Signal shutdown."""
        logger.info("Shutting down...")
        self._shutdown_event.set()

    async def _run_web_server(self) -> None:
        """Run the FastAPI web server."""
        from dashboard.app import app

        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=settings.dashboard_port,
            log_level="info",
        )
        server = uvicorn.Server(config)
        try:
            await server.serve()
        except asyncio.CancelledError:
            pass

    async def _run_cache_pruner(self) -> None:
        """Drop expired reports once per cache lifetime."""
        while True:
            try:
                pruned = await report_cache.prune_expired()
                if pruned > 0:
                    logger.info(f"Pruned {pruned} expired reports")
            except Exception as e:
                logger.error(f"Cache prune error: {e}")
            await asyncio.sleep(settings.stats_cache_ttl_minutes * 60)


async def run_report(username: str, time_range: Optional[str], music: bool) -> Optional[str]:
    """Build one report without the web server; returns its JSON or None for an unknown user."""
    service = WrappedService(cache=MemoryReportCache(settings.stats_cache_ttl_minutes * 60))
    user = await service.validate_user(username)
    if user is None:
        return None
    if music:
        report = await service.get_user_music(user.id, time_range)
    else:
        report = await service.get_user_wrapped(user.id, time_range)
    return report.model_dump_json(by_alias=True, indent=2)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Emby Wrapped - year in review for Emby users")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("serve", help="Run the web dashboard (default)")

    report_parser = subparsers.add_parser("report", help="Print one user's report as JSON")
    report_parser.add_argument("--user", required=True, help="Emby user name")
    report_parser.add_argument(
        "--range",
        dest="time_range",
        default=None,
        help="Year (2025) or month (2026-01); defaults to the current year",
    )
    report_parser.add_argument(
        "--music", action="store_true", help="Print the full music report instead"
    )

    args = parser.parse_args()

    if not settings.emby_api_key:
        logger.error("EMBY_API_KEY is not set. Please set it in .env file.")
        sys.exit(1)

    if args.command == "report":
        try:
            output = asyncio.run(run_report(args.user, args.time_range, args.music))
        except EmbyError as e:
            logger.error(f"Failed to build report: {e}")
            sys.exit(1)
        if output is None:
            logger.error(f"User {args.user!r} not found on this server")
            sys.exit(1)
        print(output)
    else:
        server = WrappedServer()
        asyncio.run(server.start())


if __name__ == "__main__":
    main()
