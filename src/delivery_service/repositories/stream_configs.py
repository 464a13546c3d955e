"""Stream (NATS) configuration repository."""
from __future__ import annotations

from typing import List

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from delivery_service.core.exceptions import StreamConfigNotFoundError
from delivery_service.domain.dto import StreamConfigDTO
from delivery_service.domain.models import StreamConfig
from delivery_service.repositories.base import BaseRepository


class StreamConfigRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> StreamConfig:
        return StreamConfig.model_validate(dict(record))

    async def upsert(self, name: str, data: StreamConfigDTO) -> StreamConfig:
        record = await self._fetchrow(
            """
            INSERT INTO stream_configs (
                name, servers, auth_mode, auth_token, nkey_seed, credentials_file,
                stream_name, subject_prefix, pool_size, connect_timeout_ms, enabled
            )
            VALUES ($1, $2::text[], $3, $4, $5, $6, $7, $8, $9, $10, $11)
            ON CONFLICT (name) DO UPDATE SET
                servers = EXCLUDED.servers,
                auth_mode = EXCLUDED.auth_mode,
                auth_token = EXCLUDED.auth_token,
                nkey_seed = EXCLUDED.nkey_seed,
                credentials_file = EXCLUDED.credentials_file,
                stream_name = EXCLUDED.stream_name,
                subject_prefix = EXCLUDED.subject_prefix,
                pool_size = EXCLUDED.pool_size,
                connect_timeout_ms = EXCLUDED.connect_timeout_ms,
                enabled = EXCLUDED.enabled,
                updated_at = now()
            RETURNING *
            """,
            name,
            data.servers,
            data.auth_mode.value,
            data.auth_token,
            data.nkey_seed,
            data.credentials_file,
            data.stream_name,
            data.subject_prefix,
            data.pool_size,
            data.connect_timeout_ms,
            data.enabled,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, name: str) -> StreamConfig:
        record = await self._fetchrow("SELECT * FROM stream_configs WHERE name = $1", name)
        if record is None:
            raise StreamConfigNotFoundError(f"Stream config {name!r} not found")
        return self._to_model(record)

    async def list(self) -> List[StreamConfig]:
        records = await self._fetch("SELECT * FROM stream_configs ORDER BY name ASC")
        return [self._to_model(r) for r in records]
