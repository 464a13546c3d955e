"""Service wiring and accessors for aiohttp handlers."""
from __future__ import annotations

from dataclasses import dataclass

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import ClientSession, web

from delivery_service.repositories import (
    DeliveryAttemptRepository,
    EndpointRepository,
    MonitoringRepository,
    PublishRecordRepository,
    StreamConfigRepository,
)
from delivery_service.services.deliveries import DeliveryService
from delivery_service.services.executor import TransportExecutor
from delivery_service.services.monitoring import MonitoringService
from delivery_service.services.publisher import Publisher
from delivery_service.services.registry import EndpointRegistry
from delivery_service.services.scheduler import RetryScheduler
from delivery_service.services.stream_configs import StreamConfigService
from delivery_service.settings import Settings
from delivery_service.stream.client import ConnectFn, connect_stream
from delivery_service.stream.pool import StreamPoolRegistry

logger = structlog.get_logger(__name__)

CONTAINER_KEY = "delivery_services"
_HTTP_SESSION_KEY = "delivery_http_session"


@dataclass
class ServiceContainer:
    registry: EndpointRegistry
    publisher: Publisher
    deliveries: DeliveryService
    scheduler: RetryScheduler
    monitoring: MonitoringService
    stream_configs: StreamConfigService
    stream_pools: StreamPoolRegistry

    async def close(self) -> None:
        await self.stream_pools.close_all()


def build_container(
    pool: asyncpg.Pool,
    session: ClientSession,
    settings: Settings,
    *,
    connect: ConnectFn = connect_stream,
) -> ServiceContainer:
    endpoints = EndpointRepository(pool)
    deliveries = DeliveryAttemptRepository(pool)
    stream_config_repo = StreamConfigRepository(pool)
    stream_pools = StreamPoolRegistry(
        stream_config_repo,
        connect=connect,
        reconnect_base_seconds=settings.stream_reconnect_base_seconds,
        reconnect_max_seconds=settings.stream_reconnect_max_seconds,
    )
    executor = TransportExecutor(
        session,
        deliveries,
        endpoints,
        max_retry_delay_seconds=settings.retry_max_delay_seconds,
    )
    return ServiceContainer(
        registry=EndpointRegistry(endpoints),
        publisher=Publisher(endpoints, deliveries, PublishRecordRepository(pool), stream_pools),
        deliveries=DeliveryService(deliveries),
        scheduler=RetryScheduler(
            deliveries,
            endpoints,
            executor,
            batch_size=settings.delivery_batch_size,
            max_concurrency=settings.delivery_max_concurrency,
        ),
        monitoring=MonitoringService(MonitoringRepository(pool)),
        stream_configs=StreamConfigService(stream_config_repo, stream_pools),
        stream_pools=stream_pools,
    )


def create_service_hooks(settings: Settings, get_pool):
    """Startup/cleanup hooks that own the HTTP session, stream pools and services."""

    async def init_services(app: web.Application) -> None:
        pool = await get_pool()
        session = ClientSession()
        app[_HTTP_SESSION_KEY] = session
        app[CONTAINER_KEY] = build_container(pool, session, settings)
        logger.info("delivery services initialised")

    async def close_services(app: web.Application) -> None:
        container: ServiceContainer | None = app.get(CONTAINER_KEY)
        if container is not None:
            await container.close()
        session: ClientSession | None = app.get(_HTTP_SESSION_KEY)
        if session is not None:
            await session.close()

    return init_services, close_services


def get_container(request: web.Request) -> ServiceContainer:
    container = request.app.get(CONTAINER_KEY)
    if container is None:
        raise web.HTTPServiceUnavailable(text="Services are not initialised")
    return container


def get_registry(request: web.Request) -> EndpointRegistry:
    return get_container(request).registry


def get_publisher(request: web.Request) -> Publisher:
    return get_container(request).publisher


def get_delivery_service(request: web.Request) -> DeliveryService:
    return get_container(request).deliveries


def get_scheduler(request: web.Request) -> RetryScheduler:
    return get_container(request).scheduler


def get_monitoring_service(request: web.Request) -> MonitoringService:
    return get_container(request).monitoring


def get_stream_config_service(request: web.Request) -> StreamConfigService:
    return get_container(request).stream_configs
