"""Worker: purge old terminal delivery attempts."""
from __future__ import annotations

from datetime import datetime, timedelta

from delivery_service.db.pool import get_pool
from delivery_service.repositories.deliveries import DeliveryAttemptRepository
from delivery_service.services.deliveries import DeliveryService
from delivery_service.settings import settings


async def delivery_purge_terminal(now: datetime) -> str | None:
    """Delete success/failed attempts older than ``delivery_retention_days``."""
    pool = await get_pool()
    cutoff = now - timedelta(days=settings.delivery_retention_days)
    service = DeliveryService(DeliveryAttemptRepository(pool))
    purged = await service.cleanup_old_attempts(cutoff, only_terminal=True)
    return f"purged={purged}" if purged else None
