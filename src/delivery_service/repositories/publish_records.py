"""Stream publish history repository."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List
from uuid import UUID

from asyncpg import Pool  # type: ignore[import-untyped]

from delivery_service.domain.models import PublishRecord
from delivery_service.repositories.base import BaseRepository


class PublishRecordRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    async def record(
        self,
        *,
        endpoint_id: UUID,
        subject: str,
        payload: Any,
        success: bool,
        latency_ms: int | None,
        error: str | None = None,
        stream_name: str | None = None,
        stream_sequence: int | None = None,
        message_id: str | None = None,
    ) -> PublishRecord:
        record = await self._fetchrow(
            """
            INSERT INTO publish_records (
                endpoint_id, subject, payload, success, latency_ms, error,
                stream_name, stream_sequence, message_id
            )
            VALUES ($1, $2, $3::jsonb, $4, $5, $6, $7, $8, $9)
            RETURNING *
            """,
            endpoint_id,
            subject,
            json.dumps(payload),
            success,
            latency_ms,
            error,
            stream_name,
            stream_sequence,
            message_id,
        )
        assert record is not None
        return PublishRecord.model_validate(self._decode_json(dict(record), "payload"))

    async def list_by_endpoint(
        self, endpoint_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> List[PublishRecord]:
        records = await self._fetch(
            """
            SELECT *
            FROM publish_records
            WHERE endpoint_id = $1
            ORDER BY published_at DESC
            LIMIT $2 OFFSET $3
            """,
            endpoint_id,
            limit,
            offset,
        )
        return [PublishRecord.model_validate(self._decode_json(dict(r), "payload")) for r in records]

    async def delete_older_than(self, cutoff: datetime, *, keep_failed: bool = True) -> int:
        """Purge publish records older than *cutoff*, optionally keeping failures."""
        result = await self._execute(
            """
            DELETE FROM publish_records
            WHERE published_at < $1
              AND ($2::boolean IS FALSE OR success)
            """,
            cutoff,
            keep_failed,
        )
        return self._affected(result)
