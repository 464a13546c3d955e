"""Read-only aggregates over delivery attempts and publish history."""
from __future__ import annotations

from datetime import datetime
from typing import List
from uuid import UUID

from asyncpg import Pool  # type: ignore[import-untyped]

from delivery_service.domain.models import (
    BacklogStats,
    EndpointStats,
    FailureEntry,
    StreamPublishStats,
)
from delivery_service.repositories.base import BaseRepository


class MonitoringRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    async def endpoint_stats(self, endpoint_id: UUID | None = None) -> List[EndpointStats]:
        records = await self._fetch(
            """
            SELECT e.id AS endpoint_id,
                   e.name,
                   e.enabled,
                   e.transport_mode,
                   COUNT(a.id) AS total,
                   COUNT(a.id) FILTER (WHERE a.status = 'pending' AND a.locked_at IS NULL) AS pending,
                   COUNT(a.id) FILTER (WHERE a.status = 'pending' AND a.locked_at IS NOT NULL) AS in_flight,
                   COUNT(a.id) FILTER (WHERE a.status = 'retrying') AS retrying,
                   COUNT(a.id) FILTER (WHERE a.status = 'success') AS succeeded,
                   COUNT(a.id) FILTER (WHERE a.status = 'failed') AS failed,
                   ROUND(
                       100.0 * COUNT(a.id) FILTER (WHERE a.status = 'success')
                       / NULLIF(COUNT(a.id) FILTER (WHERE a.status IN ('success', 'failed')), 0),
                       2
                   )::float8 AS success_rate,
                   AVG(a.latency_ms) FILTER (WHERE a.status = 'success')::float8 AS avg_latency_ms,
                   MAX(a.created_at) AS last_attempt_at
            FROM endpoints e
            LEFT JOIN delivery_attempts a ON a.endpoint_id = e.id
            WHERE ($1::uuid IS NULL OR e.id = $1)
            GROUP BY e.id
            ORDER BY e.name ASC
            """,
            endpoint_id,
        )
        return [EndpointStats.model_validate(dict(r)) for r in records]

    async def backlog(self) -> BacklogStats:
        record = await self._fetchrow(
            """
            SELECT COUNT(*) FILTER (WHERE status = 'pending' AND locked_at IS NULL) AS pending,
                   COUNT(*) FILTER (WHERE status = 'pending' AND locked_at IS NOT NULL) AS in_flight,
                   COUNT(*) FILTER (WHERE status = 'retrying') AS retrying,
                   MIN(scheduled_at) FILTER (WHERE status = 'pending' AND locked_at IS NULL)
                       AS oldest_pending_at
            FROM delivery_attempts
            WHERE status IN ('pending', 'retrying')
            """
        )
        return BacklogStats.model_validate(dict(record)) if record else BacklogStats()

    async def recent_failures(self, *, limit: int = 100) -> List[FailureEntry]:
        records = await self._fetch(
            """
            SELECT a.id AS delivery_id,
                   a.endpoint_id,
                   e.name AS endpoint_name,
                   a.retry_count,
                   a.last_error,
                   a.response_code,
                   a.updated_at
            FROM delivery_attempts a
            JOIN endpoints e ON e.id = a.endpoint_id
            WHERE a.status = 'failed'
            ORDER BY a.updated_at DESC
            LIMIT $1
            """,
            limit,
        )
        return [FailureEntry.model_validate(dict(r)) for r in records]

    async def stream_stats(self, since: datetime) -> List[StreamPublishStats]:
        records = await self._fetch(
            """
            SELECT p.endpoint_id,
                   e.name AS endpoint_name,
                   COUNT(*) AS total,
                   COUNT(*) FILTER (WHERE p.success) AS succeeded,
                   COUNT(*) FILTER (WHERE NOT p.success) AS failed,
                   ROUND(100.0 * COUNT(*) FILTER (WHERE p.success) / COUNT(*), 2)::float8
                       AS success_rate,
                   AVG(p.latency_ms)::float8 AS avg_latency_ms,
                   percentile_cont(0.50) WITHIN GROUP (ORDER BY p.latency_ms) AS p50_latency_ms,
                   percentile_cont(0.95) WITHIN GROUP (ORDER BY p.latency_ms) AS p95_latency_ms,
                   percentile_cont(0.99) WITHIN GROUP (ORDER BY p.latency_ms) AS p99_latency_ms,
                   MAX(p.published_at) AS last_published_at
            FROM publish_records p
            JOIN endpoints e ON e.id = p.endpoint_id
            WHERE p.published_at >= $1
            GROUP BY p.endpoint_id, e.name
            ORDER BY e.name ASC
            """,
            since,
        )
        return [StreamPublishStats.model_validate(dict(r)) for r in records]
