"""Delivery attempt queue repository."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Tuple
from uuid import UUID

import asyncpg  # type: ignore[import-untyped]
from asyncpg import Pool, Record  # type: ignore[import-untyped]

from delivery_service.core.exceptions import DeliveryNotFoundError, EndpointNotFoundError
from delivery_service.domain.enums import DeliveryStatus
from delivery_service.domain.models import AttemptHistoryEntry, DeliveryAttempt, Outcome
from delivery_service.repositories.base import BaseRepository
from delivery_service.services.state_machine import Transition


class DeliveryAttemptRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> DeliveryAttempt:
        payload = BaseRepository._decode_json(dict(record), "payload")
        payload.pop("due_at", None)
        return DeliveryAttempt.model_validate(payload)

    async def enqueue(
        self,
        *,
        endpoint_id: UUID,
        payload: Any,
        source: str | None = None,
        scheduled_at: datetime | None = None,
    ) -> DeliveryAttempt:
        try:
            record = await self._fetchrow(
                """
                INSERT INTO delivery_attempts (endpoint_id, payload, source, status, scheduled_at)
                VALUES ($1, $2::jsonb, $3, 'pending', COALESCE($4, now()))
                RETURNING *
                """,
                endpoint_id,
                json.dumps(payload),
                source,
                scheduled_at,
            )
        except asyncpg.ForeignKeyViolationError as exc:
            raise EndpointNotFoundError(f"Endpoint {endpoint_id} not found") from exc
        assert record is not None
        return self._to_model(record)

    async def get(self, delivery_id: UUID) -> DeliveryAttempt:
        record = await self._fetchrow("SELECT * FROM delivery_attempts WHERE id = $1", delivery_id)
        if record is None:
            raise DeliveryNotFoundError(f"Delivery {delivery_id} not found")
        return self._to_model(record)

    async def list(
        self,
        *,
        endpoint_id: UUID | None = None,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[DeliveryAttempt], int]:
        where: list[str] = []
        values: list[Any] = []
        if endpoint_id is not None:
            values.append(endpoint_id)
            where.append(f"endpoint_id = ${len(values)}")
        if status is not None:
            values.append(status.value)
            where.append(f"status = ${len(values)}")
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        idx = len(values) + 1
        query = f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM delivery_attempts
            {where_sql}
            ORDER BY created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """
        records = await self._fetch(query, *values, limit, offset)
        items: List[DeliveryAttempt] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total = int(rec_dict.pop("total_count"))
            items.append(self._to_model(rec_dict))
        if total is None:
            record = await self._fetchrow(
                f"SELECT COUNT(*) AS total FROM delivery_attempts {where_sql}", *values
            )
            total = int(record["total"]) if record else 0
        return items, total

    async def list_history(self, delivery_id: UUID) -> List[AttemptHistoryEntry]:
        records = await self._fetch(
            """
            SELECT *
            FROM delivery_attempt_history
            WHERE delivery_id = $1
            ORDER BY attempt_number ASC
            """,
            delivery_id,
        )
        return [AttemptHistoryEntry.model_validate(dict(r)) for r in records]

    async def claim_due_pending(self, now: datetime, *, limit: int = 100) -> List[DeliveryAttempt]:
        """Atomically claim fresh pending attempts of enabled endpoints.

        Uses row-level locking (FOR UPDATE SKIP LOCKED) so concurrent dispatchers
        never claim the same attempt. Claimed rows stay ``pending`` with
        ``locked_at`` set (in flight).
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                records = await conn.fetch(
                    """
                    WITH cte AS (
                        SELECT a.id
                        FROM delivery_attempts a
                        JOIN endpoints e ON e.id = a.endpoint_id
                        WHERE a.status = 'pending'
                          AND a.locked_at IS NULL
                          AND a.scheduled_at <= $1
                          AND e.enabled
                        ORDER BY a.scheduled_at ASC, a.created_at ASC
                        LIMIT $2
                        FOR UPDATE OF a SKIP LOCKED
                    )
                    UPDATE delivery_attempts d
                    SET locked_at = $1,
                        claim_id = gen_random_uuid(),
                        started_at = $1,
                        updated_at = $1
                    FROM cte
                    WHERE d.id = cte.id
                    RETURNING d.*
                    """,
                    now,
                    limit,
                )
        attempts = [self._to_model(r) for r in records]
        attempts.sort(key=lambda a: (a.scheduled_at, a.created_at))
        return attempts

    async def claim_due_retries(self, now: datetime, *, limit: int = 100) -> List[DeliveryAttempt]:
        """Atomically claim retrying attempts whose ``next_retry_at`` has passed.

        Side-effects:
          - status -> pending (in flight)
          - locked_at, started_at -> now
          - retry_count += 1
          - next_retry_at -> NULL

        Only endpoints that are enabled and still have retry budget are eligible.
        The result is ordered by the original ``next_retry_at``.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                records = await conn.fetch(
                    """
                    WITH cte AS (
                        SELECT a.id, a.next_retry_at AS due_at
                        FROM delivery_attempts a
                        JOIN endpoints e ON e.id = a.endpoint_id
                        WHERE a.status = 'retrying'
                          AND a.next_retry_at <= $1
                          AND a.retry_count < e.max_retries
                          AND e.enabled
                        ORDER BY a.next_retry_at ASC
                        LIMIT $2
                        FOR UPDATE OF a SKIP LOCKED
                    )
                    UPDATE delivery_attempts d
                    SET status = 'pending',
                        locked_at = $1,
                        claim_id = gen_random_uuid(),
                        started_at = $1,
                        retry_count = d.retry_count + 1,
                        next_retry_at = NULL,
                        updated_at = $1
                    FROM cte
                    WHERE d.id = cte.id
                    RETURNING d.*, cte.due_at
                    """,
                    now,
                    limit,
                )
        ordered = sorted(records, key=lambda r: r["due_at"])
        return [self._to_model(r) for r in ordered]

    async def fail_exhausted_retries(self, now: datetime) -> int:
        """Move retrying attempts with no budget left (``max_retries`` lowered) to ``failed``."""
        result = await self._execute(
            """
            UPDATE delivery_attempts a
            SET status = 'failed',
                next_retry_at = NULL,
                completed_at = $1,
                updated_at = $1
            FROM endpoints e
            WHERE e.id = a.endpoint_id
              AND a.status = 'retrying'
              AND a.retry_count >= e.max_retries
            """,
            now,
        )
        return self._affected(result)

    async def record_outcome(
        self,
        delivery_id: UUID,
        *,
        claim_id: UUID | None,
        transition: Transition,
        outcome: Outcome,
        now: datetime,
    ) -> bool:
        """Persist an executed attempt and append its history entry.

        Applies only while *claim_id* still owns the in-flight row; returns
        False when the row was released, re-claimed or completed meanwhile.
        """
        completed_at = now if transition.status.is_terminal else None
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                record = await conn.fetchrow(
                    """
                    UPDATE delivery_attempts
                    SET status = $2,
                        next_retry_at = $3,
                        last_error = $4,
                        latency_ms = $5,
                        response_code = $6,
                        response_body = $7,
                        completed_at = $8,
                        locked_at = NULL,
                        claim_id = NULL,
                        updated_at = $9
                    WHERE id = $1
                      AND status = 'pending'
                      AND locked_at IS NOT NULL
                      AND claim_id = $10
                    RETURNING retry_count, started_at
                    """,
                    delivery_id,
                    transition.status.value,
                    transition.next_retry_at,
                    transition.last_error,
                    outcome.latency_ms,
                    outcome.response_code,
                    outcome.response_body,
                    completed_at,
                    now,
                    claim_id,
                )
                if record is None:
                    return False
                await conn.execute(
                    """
                    INSERT INTO delivery_attempt_history (
                        delivery_id, attempt_number, success, response_code,
                        error, latency_ms, started_at, completed_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    """,
                    delivery_id,
                    record["retry_count"] + 1,
                    outcome.success,
                    outcome.response_code,
                    outcome.error,
                    outcome.latency_ms,
                    record["started_at"],
                    now,
                )
        return True

    async def reschedule_failed(self, delivery_id: UUID, now: datetime) -> bool:
        """Move a ``failed`` attempt back to ``retrying`` when budget remains."""
        record = await self._fetchrow(
            """
            UPDATE delivery_attempts a
            SET status = 'retrying',
                next_retry_at = $2,
                completed_at = NULL,
                updated_at = $2
            FROM endpoints e
            WHERE a.id = $1
              AND e.id = a.endpoint_id
              AND a.status = 'failed'
              AND a.retry_count < e.max_retries
            RETURNING a.id
            """,
            delivery_id,
            now,
        )
        return record is not None

    async def reclaim_stuck(self, locked_before: datetime) -> int:
        """Release in-flight attempts claimed before *locked_before* (e.g. after crash).

        Returns the number of reclaimed rows.
        """
        result = await self._execute(
            """
            UPDATE delivery_attempts
            SET locked_at = NULL,
                claim_id = NULL,
                started_at = NULL,
                updated_at = now()
            WHERE status = 'pending'
              AND locked_at < $1
            """,
            locked_before,
        )
        return self._affected(result)

    async def delete_older_than(self, cutoff: datetime, *, only_terminal: bool = True) -> int:
        """Purge attempts created before *cutoff*; history rows cascade. Returns count."""
        result = await self._execute(
            """
            DELETE FROM delivery_attempts
            WHERE created_at < $1
              AND ($2::boolean IS FALSE OR status IN ('success', 'failed'))
            """,
            cutoff,
            only_terminal,
        )
        return self._affected(result)
