"""Read-only delivery and stream metrics."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List
from uuid import UUID

from delivery_service.domain.models import (
    BacklogStats,
    EndpointStats,
    FailureEntry,
    StreamPublishStats,
)
from delivery_service.repositories.monitoring import MonitoringRepository

DEFAULT_STREAM_WINDOW = timedelta(hours=24)


class MonitoringService:
    def __init__(self, repository: MonitoringRepository):
        self._repo = repository

    async def endpoint_stats(self, endpoint_id: UUID | None = None) -> List[EndpointStats]:
        return await self._repo.endpoint_stats(endpoint_id)

    async def backlog(self) -> BacklogStats:
        return await self._repo.backlog()

    async def recent_failures(self, *, limit: int = 100) -> List[FailureEntry]:
        return await self._repo.recent_failures(limit=limit)

    async def stream_stats(
        self, *, window: timedelta = DEFAULT_STREAM_WINDOW, now: datetime | None = None
    ) -> List[StreamPublishStats]:
        now = now or datetime.now(timezone.utc)
        return await self._repo.stream_stats(now - window)
