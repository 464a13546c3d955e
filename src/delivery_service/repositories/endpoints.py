"""Endpoint and endpoint secret repository."""
from __future__ import annotations

import json
from typing import Any, List, Tuple
from uuid import UUID

import asyncpg  # type: ignore[import-untyped]
from asyncpg import Pool, Record  # type: ignore[import-untyped]

from delivery_service.core.exceptions import EndpointAlreadyExistsError, EndpointNotFoundError
from delivery_service.domain.dto import EndpointCreateDTO
from delivery_service.domain.models import Endpoint
from delivery_service.repositories.base import BaseRepository

_UPDATABLE_COLUMNS = (
    "name",
    "description",
    "url",
    "method",
    "headers",
    "timeout_ms",
    "max_retries",
    "retry_delay_ms",
    "enabled",
    "transport_mode",
    "stream_subject",
    "stream_config",
)


class EndpointRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> Endpoint:
        return Endpoint.model_validate(BaseRepository._decode_json(dict(record), "headers"))

    async def create(self, data: EndpointCreateDTO) -> Endpoint:
        try:
            record = await self._fetchrow(
                """
                INSERT INTO endpoints (
                    name, description, url, method, headers, timeout_ms, max_retries,
                    retry_delay_ms, enabled, transport_mode, stream_subject, stream_config
                )
                VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9, $10, $11, $12)
                RETURNING *
                """,
                data.name,
                data.description,
                data.url,
                data.method.value,
                json.dumps(data.headers),
                data.timeout_ms,
                data.max_retries,
                data.retry_delay_ms,
                data.enabled,
                data.transport_mode.value,
                data.stream_subject,
                data.stream_config,
            )
        except asyncpg.UniqueViolationError as exc:
            raise EndpointAlreadyExistsError(f"Endpoint {data.name!r} already exists") from exc
        assert record is not None
        return self._to_model(record)

    async def get(self, endpoint_id: UUID) -> Endpoint:
        record = await self._fetchrow("SELECT * FROM endpoints WHERE id = $1", endpoint_id)
        if record is None:
            raise EndpointNotFoundError(f"Endpoint {endpoint_id} not found")
        return self._to_model(record)

    async def list(
        self, *, enabled_only: bool = False, limit: int = 50, offset: int = 0
    ) -> Tuple[List[Endpoint], int]:
        records = await self._fetch(
            """
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM endpoints
            WHERE ($1::boolean IS FALSE OR enabled)
            ORDER BY name ASC
            LIMIT $2 OFFSET $3
            """,
            enabled_only,
            limit,
            offset,
        )
        items: List[Endpoint] = []
        total = 0
        for rec in records:
            rec_dict = dict(rec)
            total = int(rec_dict.pop("total_count", 0))
            items.append(Endpoint.model_validate(self._decode_json(rec_dict, "headers")))
        if not items and offset:
            record = await self._fetchrow(
                "SELECT COUNT(*) AS total FROM endpoints WHERE ($1::boolean IS FALSE OR enabled)",
                enabled_only,
            )
            total = int(record["total"]) if record else 0
        return items, total

    async def update(self, endpoint_id: UUID, fields: dict[str, Any]) -> Endpoint:
        """Write the given JSON-mode columns; raises ``EndpointNotFoundError`` when the row is gone."""
        assignments: list[str] = []
        values: list[Any] = [endpoint_id]
        for column in _UPDATABLE_COLUMNS:
            if column not in fields:
                continue
            if column == "headers":
                values.append(json.dumps(fields[column]))
                assignments.append(f"headers = ${len(values)}::jsonb")
            else:
                values.append(fields[column])
                assignments.append(f"{column} = ${len(values)}")
        if not assignments:
            return await self.get(endpoint_id)
        assignments.append("updated_at = now()")
        try:
            record = await self._fetchrow(
                f"UPDATE endpoints SET {', '.join(assignments)} WHERE id = $1 RETURNING *",
                *values,
            )
        except asyncpg.UniqueViolationError as exc:
            raise EndpointAlreadyExistsError(f"Endpoint {fields.get('name')!r} already exists") from exc
        if record is None:
            raise EndpointNotFoundError(f"Endpoint {endpoint_id} not found")
        return self._to_model(record)

    async def delete_cascade(self, endpoint_id: UUID) -> bool:
        """Delete the endpoint with its attempts, history, secrets and publish records.

        All statements share one transaction; returns False when the endpoint is unknown.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    DELETE FROM delivery_attempt_history
                    WHERE delivery_id IN (SELECT id FROM delivery_attempts WHERE endpoint_id = $1)
                    """,
                    endpoint_id,
                )
                await conn.execute("DELETE FROM delivery_attempts WHERE endpoint_id = $1", endpoint_id)
                await conn.execute("DELETE FROM endpoint_secrets WHERE endpoint_id = $1", endpoint_id)
                await conn.execute("DELETE FROM publish_records WHERE endpoint_id = $1", endpoint_id)
                deleted = await conn.fetchval(
                    "DELETE FROM endpoints WHERE id = $1 RETURNING id", endpoint_id
                )
        return deleted is not None

    async def set_secret(self, endpoint_id: UUID, name: str, value: str) -> None:
        try:
            await self._execute(
                """
                INSERT INTO endpoint_secrets (endpoint_id, name, value)
                VALUES ($1, $2, $3)
                ON CONFLICT (endpoint_id, name)
                DO UPDATE SET value = EXCLUDED.value, updated_at = now()
                """,
                endpoint_id,
                name,
                value,
            )
        except asyncpg.ForeignKeyViolationError as exc:
            raise EndpointNotFoundError(f"Endpoint {endpoint_id} not found") from exc

    async def get_secret(self, endpoint_id: UUID, name: str) -> str | None:
        record = await self._fetchrow(
            "SELECT value FROM endpoint_secrets WHERE endpoint_id = $1 AND name = $2",
            endpoint_id,
            name,
        )
        return record["value"] if record else None

    async def list_secret_names(self, endpoint_id: UUID) -> list[str]:
        records = await self._fetch(
            "SELECT name FROM endpoint_secrets WHERE endpoint_id = $1 ORDER BY name", endpoint_id
        )
        return [r["name"] for r in records]

    async def delete_secret(self, endpoint_id: UUID, name: str) -> bool:
        result = await self._execute(
            "DELETE FROM endpoint_secrets WHERE endpoint_id = $1 AND name = $2",
            endpoint_id,
            name,
        )
        return self._affected(result) > 0
