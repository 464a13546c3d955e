"""Worker: release delivery attempts stuck in flight."""
from __future__ import annotations

from datetime import datetime, timedelta

from delivery_service.db.pool import get_pool
from delivery_service.repositories.deliveries import DeliveryAttemptRepository
from delivery_service.settings import settings


async def delivery_reclaim_stuck(now: datetime) -> str | None:
    """Release attempts claimed more than ``delivery_stuck_minutes`` ago back to the queue."""
    pool = await get_pool()
    cutoff = now - timedelta(minutes=settings.delivery_stuck_minutes)
    reclaimed = await DeliveryAttemptRepository(pool).reclaim_stuck(cutoff)
    return f"reclaimed={reclaimed}" if reclaimed else None
