"""Fixed-size NATS connection pools with background reconnect.

Each stream configuration gets ``pool_size`` connections, opened in the
background by :meth:`StreamConnectionPool.start`. ``acquire`` hands out live
connections round-robin without awaiting, so it is atomic with respect to
other coroutines on the loop. A connection found closed is taken out of
rotation and reconnected in the background with exponential backoff.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import structlog

from delivery_service.core.exceptions import InvalidConfigurationError, PoolExhaustedError
from delivery_service.domain.models import PoolStats, StreamConfig
from delivery_service.repositories.stream_configs import StreamConfigRepository
from delivery_service.stream.client import ConnectFn, NatsConnection, connect_stream

logger = structlog.get_logger(__name__)

HEALTHY_THRESHOLD_PERCENT = 50.0


@dataclass
class _Slot:
    index: int
    connection: NatsConnection | None = None
    alive: bool = False
    reconnect_task: asyncio.Task | None = field(default=None, repr=False)


@dataclass(frozen=True)
class PoolLease:
    """A connection handed out by :meth:`StreamConnectionPool.acquire`."""

    slot: int
    connection: NatsConnection


class StreamConnectionPool:
    def __init__(
        self,
        config: StreamConfig,
        *,
        connect: ConnectFn = connect_stream,
        reconnect_base_seconds: float = 1.0,
        reconnect_max_seconds: float = 30.0,
    ):
        self.config = config
        self._connect = connect
        self._reconnect_base = reconnect_base_seconds
        self._reconnect_max = reconnect_max_seconds
        self._slots = [_Slot(index=i) for i in range(config.pool_size)]
        self._next = 0
        self._requests_served = 0
        self._closed = False
        self._starting = 0
        self._live = asyncio.Event()
        self._started = asyncio.Event()

    @property
    def name(self) -> str:
        return self.config.name

    def start(self) -> None:
        """Begin connecting every slot in the background; returns immediately."""
        self._starting = len(self._slots)
        if not self._slots:
            self._started.set()
        for slot in self._slots:
            self._schedule_reconnect(slot, initial=True)
        logger.info("stream pool starting", config=self.name, size=len(self._slots))

    async def wait_ready(self) -> None:
        """Wait until a connection is live or every slot has tried to connect once.

        Unbounded; callers apply their own deadline.
        """
        if self._live.is_set() or self._started.is_set():
            return
        waiters = [
            asyncio.ensure_future(self._live.wait()),
            asyncio.ensure_future(self._started.wait()),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def wait_started(self) -> None:
        """Wait until every slot has made its first connection attempt."""
        await self._started.wait()

    def acquire(self) -> PoolLease:
        """Return the next live connection; raises ``PoolExhaustedError`` when none is left."""
        size = len(self._slots)
        if not self._closed:
            for offset in range(size):
                slot = self._slots[(self._next + offset) % size]
                if not slot.alive:
                    continue
                if slot.connection is None or not slot.connection.is_connected:
                    self._mark_slot_dead(slot)
                    continue
                self._next = (slot.index + 1) % size
                self._requests_served += 1
                return PoolLease(slot=slot.index, connection=slot.connection)
        raise PoolExhaustedError(f"No live NATS connections in pool {self.name!r}")

    def release(self, lease: PoolLease) -> None:
        """Connections are shared; nothing to return."""

    def mark_dead(self, lease: PoolLease) -> None:
        slot = self._slots[lease.slot]
        if slot.connection is lease.connection:
            self._mark_slot_dead(slot)

    def _mark_slot_dead(self, slot: _Slot) -> None:
        if slot.alive:
            logger.warning("nats connection lost", config=self.name, slot=slot.index)
        slot.alive = False
        if not any(s.alive for s in self._slots):
            self._live.clear()
        self._schedule_reconnect(slot)

    def _schedule_reconnect(self, slot: _Slot, *, initial: bool = False) -> None:
        if self._closed or (slot.reconnect_task is not None and not slot.reconnect_task.done()):
            return
        slot.reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect(slot, initial=initial)
        )

    async def _reconnect(self, slot: _Slot, *, initial: bool = False) -> None:
        stale, slot.connection = slot.connection, None
        if stale is not None:
            await self._close_connection(stale, slot.index)
        delay = self._reconnect_base
        if initial:
            connected = await self._try_connect(slot)
            self._starting -= 1
            if self._starting <= 0:
                self._started.set()
            if connected:
                return
        while not self._closed:
            await asyncio.sleep(delay)
            if await self._try_connect(slot):
                return
            delay = min(delay * 2, self._reconnect_max)
            logger.info(
                "nats reconnect scheduled", config=self.name, slot=slot.index, retry_in_seconds=delay
            )

    async def _try_connect(self, slot: _Slot) -> bool:
        try:
            connection = await self._connect(self.config, slot.index)
        except Exception as exc:
            logger.warning("nats connect failed", config=self.name, slot=slot.index, error=str(exc))
            return False
        if self._closed:
            await self._close_connection(connection, slot.index)
            return True
        slot.connection = connection
        slot.alive = True
        self._live.set()
        logger.info("nats connection ready", config=self.name, slot=slot.index)
        return True

    async def _close_connection(self, connection: NatsConnection, index: int) -> None:
        try:
            await connection.close()
        except Exception as exc:
            logger.debug("nats close failed", config=self.name, slot=index, error=str(exc))

    def stats(self) -> PoolStats:
        total = len(self._slots)
        healthy = sum(
            1
            for slot in self._slots
            if slot.alive and slot.connection is not None and slot.connection.is_connected
        )
        percentage = round(100.0 * healthy / total, 2) if total else 0.0
        return PoolStats(
            config_name=self.name,
            total_connections=total,
            healthy_connections=healthy,
            requests_served=self._requests_served,
            health_percentage=percentage,
            healthy=percentage >= HEALTHY_THRESHOLD_PERCENT,
        )

    async def close(self) -> None:
        self._closed = True
        tasks = [slot.reconnect_task for slot in self._slots if slot.reconnect_task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for slot in self._slots:
            if slot.connection is not None:
                await self._close_connection(slot.connection, slot.index)
            slot.connection = None
            slot.alive = False
        self._live.set()
        self._started.set()
        logger.info("stream pool closed", config=self.name)


class StreamPoolRegistry:
    """Lazily created pools keyed by stream config name."""

    def __init__(
        self,
        configs: StreamConfigRepository,
        *,
        connect: ConnectFn = connect_stream,
        reconnect_base_seconds: float = 1.0,
        reconnect_max_seconds: float = 30.0,
    ):
        self._configs = configs
        self._connect = connect
        self._reconnect_base = reconnect_base_seconds
        self._reconnect_max = reconnect_max_seconds
        self._pools: dict[str, StreamConnectionPool] = {}
        self._generation = 0

    async def get(self, name: str) -> StreamConnectionPool:
        """Return the pool for *name*, creating it on first use.

        A new pool connects in the background, so this never waits on NATS;
        use :meth:`StreamConnectionPool.wait_ready` before the first acquire.
        Raises ``StreamConfigNotFoundError`` for unknown configs and
        ``InvalidConfigurationError`` for disabled ones.
        """
        while True:
            pool = self._pools.get(name)
            if pool is not None:
                return pool
            generation = self._generation
            config = await self._configs.get(name)
            if generation != self._generation:
                # dropped while loading; reload the settings
                continue
            pool = self._pools.get(name)
            if pool is not None:
                return pool
            if not config.enabled:
                raise InvalidConfigurationError(f"Stream config {name!r} is disabled")
            pool = StreamConnectionPool(
                config,
                connect=self._connect,
                reconnect_base_seconds=self._reconnect_base,
                reconnect_max_seconds=self._reconnect_max,
            )
            pool.start()
            self._pools[name] = pool
            return pool

    def peek(self, name: str) -> StreamConnectionPool | None:
        return self._pools.get(name)

    async def drop(self, name: str) -> None:
        """Close and forget the pool so the next ``get`` reconnects with fresh settings."""
        self._generation += 1
        pool = self._pools.pop(name, None)
        if pool is not None:
            await pool.close()

    def stats(self) -> list[PoolStats]:
        return [pool.stats() for pool in self._pools.values()]

    async def close_all(self) -> None:
        self._generation += 1
        pools, self._pools = list(self._pools.values()), {}
        for pool in pools:
            await pool.close()
