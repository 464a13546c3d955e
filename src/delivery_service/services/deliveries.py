"""Delivery status queries, manual retry and retention."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List
from uuid import UUID

import structlog

from delivery_service.domain.enums import DeliveryStatus
from delivery_service.domain.models import AttemptHistoryEntry, DeliveryAttempt
from delivery_service.repositories.deliveries import DeliveryAttemptRepository

logger = structlog.get_logger(__name__)


class DeliveryService:
    def __init__(self, deliveries: DeliveryAttemptRepository):
        self._deliveries = deliveries

    async def get(self, delivery_id: UUID) -> DeliveryAttempt:
        return await self._deliveries.get(delivery_id)

    async def list(
        self,
        *,
        endpoint_id: UUID | None = None,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[List[DeliveryAttempt], int]:
        return await self._deliveries.list(
            endpoint_id=endpoint_id, status=status, limit=limit, offset=offset
        )

    async def history(self, delivery_id: UUID) -> List[AttemptHistoryEntry]:
        await self._deliveries.get(delivery_id)
        return await self._deliveries.list_history(delivery_id)

    async def retry(self, delivery_id: UUID, *, now: datetime | None = None) -> bool:
        """Re-arm a failed delivery for the scheduler.

        Returns False, changing nothing, unless the attempt is ``failed`` and its
        ``retry_count`` is still below the endpoint's ``max_retries``.
        Raises ``DeliveryNotFoundError`` for an unknown id.
        """
        attempt = await self._deliveries.get(delivery_id)
        if attempt.status != DeliveryStatus.FAILED:
            return False
        rescheduled = await self._deliveries.reschedule_failed(
            delivery_id, now or datetime.now(timezone.utc)
        )
        if rescheduled:
            logger.info("delivery retry scheduled", delivery_id=str(delivery_id))
        return rescheduled

    async def cleanup_old_attempts(self, older_than: datetime, *, only_terminal: bool = True) -> int:
        deleted = await self._deliveries.delete_older_than(older_than, only_terminal=only_terminal)
        logger.info(
            "delivery attempts purged",
            deleted=deleted,
            older_than=older_than.isoformat(),
            only_terminal=only_terminal,
        )
        return deleted
