"""Background delivery dispatcher (claims due attempts and executes them)."""
from __future__ import annotations

import asyncio

import structlog
from aiohttp import web

from delivery_service.services.dependencies import CONTAINER_KEY, ServiceContainer
from delivery_service.settings import settings

logger = structlog.get_logger(__name__)

_DISPATCHER_TASK_KEY = "delivery_dispatcher_task"


async def _dispatcher_loop(app: web.Application) -> None:
    container: ServiceContainer = app[CONTAINER_KEY]
    scheduler = container.scheduler
    logger.info(
        "delivery dispatcher started", interval_seconds=settings.delivery_dispatch_interval_seconds
    )
    while True:
        try:
            processed = await scheduler.run_once()
        except asyncio.CancelledError:
            logger.info("delivery dispatcher stopped")
            raise
        except Exception:
            logger.exception("delivery dispatch sweep failed")
            processed = 0
        if not processed:
            await asyncio.sleep(settings.delivery_dispatch_interval_seconds)


async def start_delivery_dispatcher(app: web.Application) -> None:
    app[_DISPATCHER_TASK_KEY] = asyncio.create_task(_dispatcher_loop(app))


async def stop_delivery_dispatcher(app: web.Application) -> None:
    task = app.get(_DISPATCHER_TASK_KEY)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
