"""Worker: purge old successful stream publish records."""
from __future__ import annotations

from datetime import datetime, timedelta

from delivery_service.db.pool import get_pool
from delivery_service.repositories.publish_records import PublishRecordRepository
from delivery_service.settings import settings


async def publish_history_purge(now: datetime) -> str | None:
    """Delete successful publish records older than ``publish_history_retention_days``."""
    pool = await get_pool()
    cutoff = now - timedelta(days=settings.publish_history_retention_days)
    purged = await PublishRecordRepository(pool).delete_older_than(cutoff, keep_failed=True)
    return f"purged={purged}" if purged else None
