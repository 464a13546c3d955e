"""Stream configuration admin."""
from __future__ import annotations

import asyncio
from typing import Any, List, Mapping

import structlog

from delivery_service.domain.dto import StreamConfigDTO, validate_config
from delivery_service.domain.models import PoolStats, StreamConfig
from delivery_service.repositories.stream_configs import StreamConfigRepository
from delivery_service.stream.pool import StreamPoolRegistry

logger = structlog.get_logger(__name__)


class StreamConfigService:
    def __init__(self, repository: StreamConfigRepository, pools: StreamPoolRegistry):
        self._repo = repository
        self._pools = pools

    async def configure(
        self, name: str, config: StreamConfigDTO | Mapping[str, Any]
    ) -> StreamConfig:
        """Create or replace a stream config.

        The live pool for *name* is dropped; the next publish reconnects with the new settings.
        """
        data = config
        if not isinstance(data, StreamConfigDTO):
            data = validate_config(StreamConfigDTO, config)
        stored = await self._repo.upsert(name, data)
        await self._pools.drop(name)
        logger.info(
            "stream config saved",
            config=name,
            servers=stored.servers,
            pool_size=stored.pool_size,
            enabled=stored.enabled,
        )
        return stored

    async def get(self, name: str) -> StreamConfig:
        return await self._repo.get(name)

    async def list(self) -> List[StreamConfig]:
        return await self._repo.list()

    async def health(self, name: str) -> PoolStats:
        """Pool statistics for *name*, connecting the pool if it is not running yet.

        Waits for the first connection round, bounded by the config's connect timeout.
        """
        pool = await self._pools.get(name)
        try:
            await asyncio.wait_for(
                pool.wait_started(), timeout=pool.config.connect_timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            logger.info("stream pool still connecting", config=name)
        return pool.stats()
