"""
Main entry point for the calsync service
Initializes the database, the sync queue and the HTTP API
"""

import asyncio
import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import psutil
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from calsync import __version__
from calsync.api import queue
from calsync.api.dependencies import init_api_dependencies, reset_api_dependencies
from calsync.api.error_handling import register_exception_handlers
from calsync.config.config_loader import load_config
from calsync.core.exceptions import QueueUnavailableError
from calsync.core.logging_manager import setup_logging
from calsync.core.models import utc_now
from calsync.core.sync_service import CalendarSyncService

logger = logging.getLogger(__name__)


def process_info() -> Dict[str, Any]:
    """Uptime and memory of the running process"""
    process = psutil.Process()
    with process.oneshot():
        uptime = time.time() - process.create_time()
        rss = process.memory_info().rss
    return {
        "pid": process.pid,
        "uptime_seconds": int(uptime),
        "memory_rss_mb": round(rss / (1024 * 1024), 1)
    }


class QueueWorker:
    """
    Background task that drains the queue on a fixed interval.
    Stale processing claims are recovered before every pass.
    """

    def __init__(self, service: CalendarSyncService, interval_seconds: float):
        self.service = service
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self):
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Queue worker started, interval {self.interval_seconds}s")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Queue worker stopped")

    async def _run(self):
        while self._running:
            try:
                await self.service.processor.recover_stale()
                await self.service.processor.process_queue()
            except QueueUnavailableError as e:
                logger.error(f"Queue worker pass skipped: {e}")
            except Exception as e:
                logger.error(f"Error in queue worker: {e}", exc_info=True)

            await asyncio.sleep(self.interval_seconds)


class CalsyncApp:
    """Calendar sync queue application"""

    def __init__(self, config: Dict[str, Any], service: Optional[CalendarSyncService] = None):
        self.config = config
        self.service = service or CalendarSyncService(config)

        interval = config.get('queue', {}).get('process_interval_seconds', 0)
        self.worker = QueueWorker(self.service, interval) if interval else None

        self.app = FastAPI(
            title="calsync",
            description="Durable calendar synchronization queue",
            version=__version__,
            lifespan=self.lifespan
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=config.get('api', {}).get('cors_origins', ["*"]),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"]
        )

        api_key = config.get('api', {}).get('api_key', 'development-key-change-in-production')
        init_api_dependencies(api_key, self.service)

        register_exception_handlers(self.app)
        self.app.include_router(queue.router)

        @self.app.get("/health")
        async def health_check():
            """Database connectivity and queue table check (no auth required)"""
            healthy = await self.service.db.health_check()
            if not healthy:
                raise HTTPException(status_code=503, detail="Database unavailable")
            return {
                "status": "healthy",
                "version": __version__,
                "timestamp": utc_now().isoformat(),
                "providers": self.service.providers.providers(),
                "process": process_info()
            }

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        await self.startup()
        yield
        await self.shutdown()

    async def startup(self):
        logger.info(f"Starting calsync {__version__}...")
        await self.service.initialize()
        if self.worker:
            await self.worker.start()
        logger.info("calsync started successfully")

    async def shutdown(self):
        logger.info("Shutting down calsync...")
        if self.worker:
            await self.worker.stop()
        await self.service.close()
        reset_api_dependencies()
        logger.info("calsync shutdown complete")


def create_app(config: Optional[Dict[str, Any]] = None, service: Optional[CalendarSyncService] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    if config is None:
        config = load_config()
    return CalsyncApp(config, service=service).app


def main():
    """Main entry point"""
    try:
        config = load_config()
        setup_logging(config)

        app = create_app(config)

        api_config = config.get('api', {})
        host = api_config.get('host', '0.0.0.0')
        port = api_config.get('port', 8080)

        logger.info(f"Starting calsync on {host}:{port}")
        uvicorn.run(app, host=host, port=port, log_level="info", access_log=True)

    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    except Exception as e:
        logger.error(f"Failed to start calsync: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
