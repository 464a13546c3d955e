"""Thin wrapper over a nats-py client with its JetStream context."""
from __future__ import annotations

from typing import Any, Awaitable, Callable

import nats
import structlog
from nats.aio.client import Client as NATS
from nats.js.api import PubAck

from delivery_service.domain.enums import AuthMode
from delivery_service.domain.models import StreamConfig

logger = structlog.get_logger(__name__)


class NatsConnection:
    """One pooled NATS connection."""

    def __init__(self, client: NATS, *, name: str):
        self._client = client
        self._js = client.jetstream()
        self.name = name

    @property
    def is_connected(self) -> bool:
        return self._client.is_connected

    async def publish(
        self,
        subject: str,
        payload: bytes,
        *,
        stream: str | None = None,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> PubAck:
        return await self._js.publish(
            subject, payload, timeout=timeout, stream=stream, headers=headers
        )

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.close()


ConnectFn = Callable[[StreamConfig, int], Awaitable[NatsConnection]]


def connect_options(config: StreamConfig, index: int) -> dict[str, Any]:
    """Keyword arguments for ``nats.connect`` built from a stream config.

    Reconnects are driven by the pool, so the client's own reconnect loop is off.
    """
    options: dict[str, Any] = {
        "servers": list(config.servers),
        "name": f"delivery-service:{config.name}:{index}",
        "connect_timeout": config.connect_timeout_ms / 1000,
        "allow_reconnect": False,
    }
    if config.auth_mode == AuthMode.TOKEN:
        options["token"] = config.auth_token
    elif config.auth_mode == AuthMode.NKEY:
        options["nkeys_seed_str"] = config.nkey_seed
    elif config.auth_mode == AuthMode.CREDENTIALS:
        options["user_credentials"] = config.credentials_file
    return options


async def connect_stream(config: StreamConfig, index: int) -> NatsConnection:
    options = connect_options(config, index)
    client = await nats.connect(**options)
    logger.debug("nats connected", config=config.name, slot=index, server=str(client.connected_url))
    return NatsConnection(client, name=options["name"])
