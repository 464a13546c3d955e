from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from delivery_service.domain.dto import StreamConfigDTO
from delivery_service.domain.enums import DeliveryStatus
from delivery_service.services.deliveries import DeliveryService
from delivery_service.services.scheduler import RetryScheduler
from tests.utils import count_rows, endpoint_config, force_attempt


def _later(hours: int = 2) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


async def _drain(scheduler: RetryScheduler, rounds: int = 10) -> None:
    for _ in range(rounds):
        await scheduler.run_once(_later())


@pytest.mark.asyncio
async def test_success_on_first_attempt(
    scheduler, registry, publisher, deliveries_repo, target_server
):
    endpoint = await registry.register(endpoint_config(url=target_server.url))
    result = await publisher.publish(endpoint.id, {"order": 1})

    assert await scheduler.run_once() == 1

    attempt = await deliveries_repo.get(result.delivery_id)
    assert attempt.status == DeliveryStatus.SUCCESS
    assert attempt.retry_count == 0
    assert attempt.locked_at is None
    assert attempt.completed_at is not None
    assert len(target_server.requests) == 1


@pytest.mark.asyncio
async def test_retry_budget_is_max_retries_plus_one(
    scheduler, registry, publisher, deliveries_repo, target_server
):
    target_server.default_status = 500
    endpoint = await registry.register(endpoint_config(url=target_server.url, max_retries=3))
    result = await publisher.publish(endpoint.id, {"order": 2})

    await _drain(scheduler)

    attempt = await deliveries_repo.get(result.delivery_id)
    assert attempt.status == DeliveryStatus.FAILED
    assert attempt.retry_count == 3
    assert attempt.next_retry_at is None
    assert attempt.last_error.startswith("HTTP 500")
    assert len(target_server.requests) == 4

    history = await deliveries_repo.list_history(attempt.id)
    assert [h.attempt_number for h in history] == [1, 2, 3, 4]
    assert not any(h.success for h in history)

    assert await DeliveryService(deliveries_repo).retry(attempt.id) is False
    assert (await deliveries_repo.get(attempt.id)).status == DeliveryStatus.FAILED


@pytest.mark.asyncio
async def test_zero_retries_fails_immediately(
    scheduler, registry, publisher, deliveries_repo, target_server
):
    target_server.default_status = 502
    endpoint = await registry.register(endpoint_config(url=target_server.url, max_retries=0))
    result = await publisher.publish(endpoint.id, {})

    await _drain(scheduler, rounds=3)

    assert (await deliveries_repo.get(result.delivery_id)).status == DeliveryStatus.FAILED
    assert len(target_server.requests) == 1


@pytest.mark.asyncio
async def test_recovers_after_transient_failures(
    scheduler, registry, publisher, deliveries_repo, target_server
):
    target_server.statuses = [500, 503]
    endpoint = await registry.register(endpoint_config(url=target_server.url, max_retries=3))
    result = await publisher.publish(endpoint.id, {})

    await _drain(scheduler)

    attempt = await deliveries_repo.get(result.delivery_id)
    assert attempt.status == DeliveryStatus.SUCCESS
    assert attempt.retry_count == 2
    assert attempt.last_error is None
    assert len(target_server.requests) == 3


@pytest.mark.asyncio
async def test_both_mode_stream_succeeds_while_http_recovers(
    scheduler,
    registry,
    publisher,
    deliveries_repo,
    publish_records_repo,
    stream_configs_repo,
    connector,
    target_server,
):
    await stream_configs_repo.upsert(
        "default", StreamConfigDTO(servers=["nats://localhost:4222"], pool_size=2)
    )
    target_server.statuses = [500, 500]
    endpoint = await registry.register(
        endpoint_config(
            url=target_server.url,
            max_retries=3,
            transport_mode="both",
            stream_subject="webhooks.orders",
        )
    )

    result = await publisher.publish(endpoint.id, {"order": 7})
    assert result.stream_result.success is True
    await _drain(scheduler)

    records = await publish_records_repo.list_by_endpoint(endpoint.id)
    assert len(records) == 1
    assert records[0].success is True
    assert sum(len(c.published) for c in connector.connections) == 1

    attempt = await deliveries_repo.get(result.delivery_id)
    assert attempt.status == DeliveryStatus.SUCCESS
    assert attempt.retry_count == 2
    assert len(target_server.requests) == 3


@pytest.mark.asyncio
async def test_retry_waits_for_backoff(
    scheduler, registry, publisher, deliveries_repo, target_server
):
    target_server.default_status = 500
    endpoint = await registry.register(
        endpoint_config(url=target_server.url, retry_delay_ms=60_000)
    )
    result = await publisher.publish(endpoint.id, {})

    await scheduler.run_once()
    assert await scheduler.process_due_retries() == 0

    attempt = await deliveries_repo.get(result.delivery_id)
    assert attempt.status == DeliveryStatus.RETRYING
    assert attempt.retry_count == 0
    assert attempt.next_retry_at > datetime.now(timezone.utc) + timedelta(seconds=50)
    assert len(target_server.requests) == 1


@pytest.mark.asyncio
async def test_concurrent_schedulers_never_double_execute(
    registry, publisher, deliveries_repo, endpoints_repo, executor, db_pool, target_server
):
    target_server.delay = 0.01
    endpoint = await registry.register(endpoint_config(url=target_server.url))
    for n in range(20):
        await publisher.publish(endpoint.id, {"n": n})

    schedulers = [
        RetryScheduler(deliveries_repo, endpoints_repo, executor, batch_size=7, max_concurrency=3)
        for _ in range(3)
    ]
    for _ in range(5):
        await asyncio.gather(*(s.run_once() for s in schedulers))

    assert len(target_server.requests) == 20
    attempts, total = await deliveries_repo.list(endpoint_id=endpoint.id, limit=100)
    assert total == 20
    assert all(a.status == DeliveryStatus.SUCCESS for a in attempts)
    assert await count_rows(db_pool, "delivery_attempt_history") == 20


@pytest.mark.asyncio
async def test_disabled_endpoint_is_skipped(
    scheduler, registry, publisher, deliveries_repo, target_server
):
    endpoint = await registry.register(endpoint_config(url=target_server.url))
    result = await publisher.publish(endpoint.id, {})
    await registry.update(endpoint.id, {"enabled": False})

    assert await scheduler.run_once(_later()) == 0

    attempt = await deliveries_repo.get(result.delivery_id)
    assert attempt.status == DeliveryStatus.PENDING
    assert attempt.locked_at is None
    assert target_server.requests == []


@pytest.mark.asyncio
async def test_disable_mid_retry_cycle_pauses_until_reenabled(
    scheduler, registry, publisher, deliveries_repo, target_server
):
    target_server.statuses = [500]
    endpoint = await registry.register(endpoint_config(url=target_server.url, max_retries=3))
    result = await publisher.publish(endpoint.id, {"order": 9})

    assert await scheduler.run_once() == 1
    attempt = await deliveries_repo.get(result.delivery_id)
    assert attempt.status == DeliveryStatus.RETRYING
    assert attempt.retry_count == 0

    await registry.update(endpoint.id, {"enabled": False})
    await _drain(scheduler, rounds=3)

    attempt = await deliveries_repo.get(result.delivery_id)
    assert attempt.status == DeliveryStatus.RETRYING
    assert attempt.retry_count == 0
    assert attempt.locked_at is None
    assert len(target_server.requests) == 1

    await registry.update(endpoint.id, {"enabled": True})
    await _drain(scheduler, rounds=3)

    attempt = await deliveries_repo.get(result.delivery_id)
    assert attempt.status == DeliveryStatus.SUCCESS
    assert attempt.retry_count == 1
    assert len(target_server.requests) == 2
    history = await deliveries_repo.list_history(attempt.id)
    assert [(h.attempt_number, h.success) for h in history] == [(1, False), (2, True)]


@pytest.mark.asyncio
async def test_lowered_max_retries_fails_waiting_retry(
    scheduler, registry, publisher, deliveries_repo, db_pool, target_server
):
    endpoint = await registry.register(endpoint_config(url=target_server.url, max_retries=5))
    result = await publisher.publish(endpoint.id, {})
    await force_attempt(
        db_pool,
        result.delivery_id,
        status=DeliveryStatus.RETRYING,
        retry_count=2,
        next_retry_at=datetime.now(timezone.utc),
    )
    await registry.update(endpoint.id, {"max_retries": 1})

    assert await scheduler.process_due_retries(_later()) == 0

    assert (await deliveries_repo.get(result.delivery_id)).status == DeliveryStatus.FAILED
    assert target_server.requests == []


@pytest.mark.asyncio
async def test_manual_retry_rearms_failed_attempt(
    scheduler, registry, publisher, deliveries_repo, db_pool, target_server
):
    endpoint = await registry.register(endpoint_config(url=target_server.url, max_retries=3))
    result = await publisher.publish(endpoint.id, {})
    await force_attempt(
        db_pool,
        result.delivery_id,
        status=DeliveryStatus.FAILED,
        retry_count=1,
        last_error="HTTP 500: boom",
    )
    service = DeliveryService(deliveries_repo)

    assert await service.retry(result.delivery_id) is True
    assert (await deliveries_repo.get(result.delivery_id)).status == DeliveryStatus.RETRYING

    assert await scheduler.process_due_retries(_later()) == 1

    attempt = await deliveries_repo.get(result.delivery_id)
    assert attempt.status == DeliveryStatus.SUCCESS
    assert attempt.retry_count == 2
    assert len(target_server.requests) == 1


@pytest.mark.asyncio
async def test_retry_rejects_non_failed_attempt(registry, publisher, deliveries_repo):
    endpoint = await registry.register(endpoint_config())
    result = await publisher.publish(endpoint.id, {})

    assert await DeliveryService(deliveries_repo).retry(result.delivery_id) is False
    assert (await deliveries_repo.get(result.delivery_id)).status == DeliveryStatus.PENDING


@pytest.mark.asyncio
async def test_cleanup_only_terminal(registry, publisher, deliveries_repo, db_pool):
    endpoint = await registry.register(endpoint_config())
    done = await publisher.publish(endpoint.id, {"n": 1})
    waiting = await publisher.publish(endpoint.id, {"n": 2})
    await force_attempt(db_pool, done.delivery_id, status=DeliveryStatus.SUCCESS)
    service = DeliveryService(deliveries_repo)

    assert await service.cleanup_old_attempts(_later(), only_terminal=True) == 1
    attempts, _ = await deliveries_repo.list(endpoint_id=endpoint.id)
    assert [a.id for a in attempts] == [waiting.delivery_id]
    assert await service.cleanup_old_attempts(_later(), only_terminal=False) == 1
    assert await count_rows(db_pool, "delivery_attempts") == 0
