"""Background workers for delivery-service.

Each worker is a standalone module exporting a single async task function
compatible with :class:`delivery_service.worker.WorkerTask`.

The :data:`worker` instance aggregates all tasks and provides
``start_background_worker`` / ``stop_background_worker`` lifecycle hooks.
"""
from __future__ import annotations

from delivery_service.settings import settings
from delivery_service.worker import BackgroundWorker, WorkerTask
from delivery_service.workers.delivery_purge import delivery_purge_terminal
from delivery_service.workers.delivery_reclaim import delivery_reclaim_stuck
from delivery_service.workers.publish_history_purge import publish_history_purge

worker = BackgroundWorker(
    interval_seconds=settings.worker_interval_seconds,
    tasks=[
        WorkerTask(name="delivery_reclaim_stuck", fn=delivery_reclaim_stuck),
        WorkerTask(name="delivery_purge_terminal", fn=delivery_purge_terminal),
        WorkerTask(name="publish_history_purge", fn=publish_history_purge),
    ],
)

start_background_worker = worker.start
stop_background_worker = worker.stop

__all__ = [
    "worker",
    "start_background_worker",
    "stop_background_worker",
]
