"""Test doubles for NATS connections and HTTP targets, plus SQL helpers."""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any
from uuid import UUID

from aiohttp import web
from asyncpg import Pool  # type: ignore[import-untyped]
from nats.js.api import PubAck

from delivery_service.domain.models import StreamConfig


async def force_attempt(pool: Pool, delivery_id: UUID, **columns: Any) -> None:
    """Overwrite columns of a stored delivery attempt."""
    values: list[Any] = [delivery_id]
    assignments = []
    for column, value in columns.items():
        values.append(value.value if isinstance(value, Enum) else value)
        assignments.append(f"{column} = ${len(values)}")
    async with pool.acquire() as conn:
        await conn.execute(
            f"UPDATE delivery_attempts SET {', '.join(assignments)} WHERE id = $1", *values
        )


async def count_rows(pool: Pool, table: str, where: str = "TRUE", *args: Any) -> int:
    async with pool.acquire() as conn:
        return await conn.fetchval(f"SELECT COUNT(*) FROM {table} WHERE {where}", *args)


class FakeNatsConnection:
    """Quacks like :class:`delivery_service.stream.client.NatsConnection`."""

    def __init__(self, name: str, *, stream: str = "WEBHOOKS"):
        self.name = name
        self.connected = True
        self.closed = False
        self.stream = stream
        self.published: list[tuple[str, bytes, dict[str, str] | None]] = []
        self.fail_with: Exception | None = None
        self.delay: float = 0.0
        self._seq = 0
        self._seen_ids: set[str] = set()

    @property
    def is_connected(self) -> bool:
        return self.connected and not self.closed

    async def publish(self, subject, payload, *, stream=None, timeout=None, headers=None) -> PubAck:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        msg_id = (headers or {}).get("Nats-Msg-Id")
        if msg_id is not None and msg_id in self._seen_ids:
            return PubAck(stream=stream or self.stream, seq=self._seq, duplicate=True)
        if msg_id is not None:
            self._seen_ids.add(msg_id)
        self._seq += 1
        self.published.append((subject, payload, headers))
        return PubAck(stream=stream or self.stream, seq=self._seq)

    async def close(self) -> None:
        self.closed = True


class FakeConnector:
    """Connect function for pools; records every connection it hands out."""

    def __init__(self):
        self.connections: list[FakeNatsConnection] = []
        self.failures_remaining = 0
        self.always_fail = False
        self.calls = 0
        self.delay = 0.0

    async def __call__(self, config: StreamConfig, index: int) -> FakeNatsConnection:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.always_fail or self.failures_remaining > 0:
            self.failures_remaining = max(0, self.failures_remaining - 1)
            raise ConnectionRefusedError(f"nats unavailable for slot {index}")
        connection = FakeNatsConnection(f"{config.name}:{index}", stream=config.stream_name)
        self.connections.append(connection)
        return connection


def endpoint_config(name: str = "orders-hook", url: str = "http://127.0.0.1:9/hook", **overrides: Any):
    config: dict[str, Any] = {"name": name, "url": url, "retry_delay_ms": 10}
    config.update(overrides)
    return config


class TargetServer:
    """Local HTTP target that records requests and answers with scripted statuses."""

    def __init__(self):
        self.requests: list[dict[str, Any]] = []
        self.statuses: list[int] = []
        self.default_status = 200
        self.delay = 0.0
        self._app = web.Application()
        self._app.router.add_route("*", "/hook", self._handle)
        self._runner = web.AppRunner(self._app)
        self.url = ""

    async def _handle(self, request):
        raw = await request.read()
        self.requests.append(
            {"method": request.method, "headers": dict(request.headers), "body": raw}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        status = self.statuses.pop(0) if self.statuses else self.default_status
        return web.Response(status=status, text=f"status {status}")

    async def start(self) -> "TargetServer":
        await self._runner.setup()
        site = web.TCPSite(self._runner, "127.0.0.1", 0)
        await site.start()
        port = site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
        self.url = f"http://127.0.0.1:{port}/hook"
        return self

    async def stop(self) -> None:
        await self._runner.cleanup()
