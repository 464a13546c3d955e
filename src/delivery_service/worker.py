"""Periodic maintenance worker for the delivery service.

Usage::

    from delivery_service.worker import BackgroundWorker, WorkerTask

    async def purge_old_attempts(now: datetime) -> str | None:
        deleted = await repo.delete_older_than(now - timedelta(days=30), only_terminal=True)
        return f"deleted={deleted}" if deleted else None

    worker = BackgroundWorker(
        interval_seconds=60.0,
        tasks=[WorkerTask(name="attempt_cleanup", fn=purge_old_attempts)],
    )

    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

# Receives the sweep time (UTC) and returns an optional summary that is logged when non-empty.
TaskFn = Callable[[datetime], Awaitable[str | None]]


@dataclass
class WorkerTask:
    """A named periodic task executed by :class:`BackgroundWorker`."""

    name: str
    fn: TaskFn


_WORKER_TASK_KEY = "__delivery_background_worker__"


@dataclass
class BackgroundWorker:
    """In-process async worker that runs its tasks once per interval.

    Tasks run sequentially within a sweep; a failing task is logged and does not
    prevent the remaining ones from running. :meth:`run_once` performs a single
    sweep and is what the loop calls after each sleep.
    """

    interval_seconds: float = 60.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)

    async def start(self, app: web.Application) -> None:
        """Create the worker asyncio task. Register with ``app.on_startup``."""
        app[_WORKER_TASK_KEY] = asyncio.create_task(self._loop())

    async def stop(self, app: web.Application) -> None:
        """Cancel the worker task. Register with ``app.on_cleanup``."""
        task = app.get(_WORKER_TASK_KEY)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def run_once(self, now: datetime | None = None) -> dict[str, str | None]:
        now = now or datetime.now(timezone.utc)
        results: dict[str, str | None] = {}
        for task in self.tasks:
            try:
                summary = await task.fn(now)
            except Exception:
                logger.exception("background_task failed", task=task.name)
                results[task.name] = None
                continue
            results[task.name] = summary
            if summary:
                logger.info("background_task completed", task=task.name, summary=summary)
        return results

    async def _loop(self) -> None:
        logger.info(
            "background_worker started",
            interval_seconds=self.interval_seconds,
            tasks=[t.name for t in self.tasks],
        )
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("background_worker stopped")
                raise
            except Exception:
                logger.exception("background_worker sweep failed")
