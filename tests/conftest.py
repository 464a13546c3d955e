from __future__ import annotations

import asyncio
from pathlib import Path

import asyncpg  # type: ignore[import-untyped]
import pytest
from aiohttp import ClientSession
from testsuite.databases.pgsql import discover

from delivery_service.db.migrations import load_migrations
from delivery_service.main import build_app
from delivery_service.repositories.deliveries import DeliveryAttemptRepository
from delivery_service.repositories.endpoints import EndpointRepository
from delivery_service.repositories.monitoring import MonitoringRepository
from delivery_service.repositories.publish_records import PublishRecordRepository
from delivery_service.repositories.stream_configs import StreamConfigRepository
from delivery_service.services.deliveries import DeliveryService
from delivery_service.services.dependencies import ServiceContainer
from delivery_service.services.executor import TransportExecutor
from delivery_service.services.monitoring import MonitoringService
from delivery_service.services.publisher import Publisher
from delivery_service.services.registry import EndpointRegistry
from delivery_service.services.scheduler import RetryScheduler
from delivery_service.services.stream_configs import StreamConfigService
from delivery_service.stream.pool import StreamPoolRegistry
from tests.utils import FakeConnector, TargetServer

pytest_plugins = (
    "testsuite.pytest_plugin",
    "testsuite.databases.pgsql.pytest_plugin",
)

MIGRATIONS_PATH = Path(__file__).resolve().parent.parent / "migrations"
DATABASE_NAME = "delivery_service"


@pytest.fixture(scope="session")
def event_loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture(scope="session")
def pgsql_local(pgsql_local_create, tmp_path_factory):
    """Database built from the service migrations, applied in version order."""
    schema_dir = tmp_path_factory.mktemp("schemas")
    schema = "\n".join(path.read_text() for path in load_migrations(MIGRATIONS_PATH).values())
    (schema_dir / f"{DATABASE_NAME}.sql").write_text(schema)
    databases = discover.find_schemas(
        service_name=None,
        schema_dirs=[schema_dir],
    )
    return pgsql_local_create(list(databases.values()))


@pytest.fixture
async def db_pool(pgsql):
    conninfo = pgsql[DATABASE_NAME].conninfo
    pool = await asyncpg.create_pool(dsn=conninfo.get_uri(), min_size=1, max_size=10)
    yield pool
    await pool.close()


@pytest.fixture
def endpoints_repo(db_pool) -> EndpointRepository:
    return EndpointRepository(db_pool)


@pytest.fixture
def deliveries_repo(db_pool) -> DeliveryAttemptRepository:
    return DeliveryAttemptRepository(db_pool)


@pytest.fixture
def publish_records_repo(db_pool) -> PublishRecordRepository:
    return PublishRecordRepository(db_pool)


@pytest.fixture
def stream_configs_repo(db_pool) -> StreamConfigRepository:
    return StreamConfigRepository(db_pool)


@pytest.fixture
def monitoring_repo(db_pool) -> MonitoringRepository:
    return MonitoringRepository(db_pool)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
async def stream_pools(stream_configs_repo, connector):
    registry = StreamPoolRegistry(
        stream_configs_repo,
        connect=connector,
        reconnect_base_seconds=0.01,
        reconnect_max_seconds=0.05,
    )
    yield registry
    await registry.close_all()


@pytest.fixture
def registry(endpoints_repo) -> EndpointRegistry:
    return EndpointRegistry(endpoints_repo)


@pytest.fixture
def publisher(endpoints_repo, deliveries_repo, publish_records_repo, stream_pools) -> Publisher:
    return Publisher(endpoints_repo, deliveries_repo, publish_records_repo, stream_pools)


@pytest.fixture
async def http_session():
    session = ClientSession()
    yield session
    await session.close()


@pytest.fixture
def executor(http_session, deliveries_repo, endpoints_repo) -> TransportExecutor:
    return TransportExecutor(http_session, deliveries_repo, endpoints_repo)


@pytest.fixture
def scheduler(deliveries_repo, endpoints_repo, executor) -> RetryScheduler:
    return RetryScheduler(deliveries_repo, endpoints_repo, executor, batch_size=50, max_concurrency=4)


@pytest.fixture
async def target_server():
    server = await TargetServer().start()
    yield server
    await server.stop()


@pytest.fixture
def container(
    registry,
    publisher,
    deliveries_repo,
    scheduler,
    monitoring_repo,
    stream_configs_repo,
    stream_pools,
) -> ServiceContainer:
    return ServiceContainer(
        registry=registry,
        publisher=publisher,
        deliveries=DeliveryService(deliveries_repo),
        scheduler=scheduler,
        monitoring=MonitoringService(monitoring_repo),
        stream_configs=StreamConfigService(stream_configs_repo, stream_pools),
        stream_pools=stream_pools,
    )


@pytest.fixture
async def service_client(aiohttp_client, container):
    """Testsuite-style client for calling the service API."""
    return await aiohttp_client(build_app(container))
