from __future__ import annotations

import uuid

import pytest

from delivery_service.domain.dto import StreamConfigDTO
from delivery_service.domain.enums import DeliveryStatus
from tests.utils import endpoint_config, force_attempt


async def _register(client, **overrides) -> dict:
    resp = await client.post("/api/v1/endpoints", json=endpoint_config(**overrides))
    assert resp.status == 201
    return await resp.json()


@pytest.mark.asyncio
async def test_healthcheck(service_client):
    resp = await service_client.get("/health")
    assert resp.status == 200
    payload = await resp.json()
    assert payload["status"] == "ok"
    assert payload["stream_pools"] == []
    assert "X-Trace-Id" in resp.headers
    assert "X-Request-Id" in resp.headers


@pytest.mark.asyncio
async def test_endpoint_crud(service_client):
    created = await _register(service_client, name="crm", method="patch")
    assert created["method"] == "PATCH"
    endpoint_id = created["id"]

    resp = await service_client.get(f"/api/v1/endpoints/{endpoint_id}")
    assert resp.status == 200
    assert (await resp.json())["name"] == "crm"

    resp = await service_client.patch(
        f"/api/v1/endpoints/{endpoint_id}", json={"timeout_ms": 2500, "enabled": False}
    )
    assert resp.status == 200
    body = await resp.json()
    assert body["timeout_ms"] == 2500
    assert body["enabled"] is False

    resp = await service_client.get("/api/v1/endpoints", params={"enabled_only": "true"})
    assert (await resp.json())["total"] == 0
    resp = await service_client.get("/api/v1/endpoints")
    listing = await resp.json()
    assert listing["total"] == 1
    assert listing["endpoints"][0]["id"] == endpoint_id

    resp = await service_client.delete(f"/api/v1/endpoints/{endpoint_id}")
    assert resp.status == 204
    resp = await service_client.get(f"/api/v1/endpoints/{endpoint_id}")
    assert resp.status == 404
    resp = await service_client.delete(f"/api/v1/endpoints/{endpoint_id}")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_register_validation_error(service_client):
    resp = await service_client.post(
        "/api/v1/endpoints", json=endpoint_config(url="ftp://x", max_retries=99)
    )
    assert resp.status == 400
    body = await resp.json()
    assert body["error"] == "InvalidConfigurationError"
    fields = {tuple(d["loc"]) for d in body["details"]}
    assert ("url",) in fields
    assert ("max_retries",) in fields


@pytest.mark.asyncio
async def test_register_duplicate_name(service_client):
    await _register(service_client, name="dup")
    resp = await service_client.post("/api/v1/endpoints", json=endpoint_config(name="dup"))
    assert resp.status == 400
    assert (await resp.json())["error"] == "EndpointAlreadyExistsError"


@pytest.mark.asyncio
async def test_invalid_json_and_ids(service_client):
    resp = await service_client.post(
        "/api/v1/endpoints", data="{not json", headers={"Content-Type": "application/json"}
    )
    assert resp.status == 400
    resp = await service_client.get("/api/v1/endpoints/not-a-uuid")
    assert resp.status == 400
    resp = await service_client.patch(f"/api/v1/endpoints/{uuid.uuid4()}", json={"enabled": True})
    assert resp.status == 404


@pytest.mark.asyncio
async def test_secrets_endpoints(service_client):
    endpoint_id = (await _register(service_client))["id"]

    resp = await service_client.put(
        f"/api/v1/endpoints/{endpoint_id}/secrets/signing_secret", json={"value": "s3cr3t"}
    )
    assert resp.status == 204
    resp = await service_client.get(f"/api/v1/endpoints/{endpoint_id}/secrets")
    assert await resp.json() == {"secrets": ["signing_secret"]}

    resp = await service_client.put(
        f"/api/v1/endpoints/{endpoint_id}/secrets/signing_secret", json={"value": ""}
    )
    assert resp.status == 400

    resp = await service_client.delete(f"/api/v1/endpoints/{endpoint_id}/secrets/signing_secret")
    assert resp.status == 204
    resp = await service_client.delete(f"/api/v1/endpoints/{endpoint_id}/secrets/signing_secret")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_publish_and_delivery_lifecycle(service_client, container, target_server):
    target_server.default_status = 500
    endpoint_id = (await _register(service_client, url=target_server.url, max_retries=0))["id"]

    resp = await service_client.post(
        f"/api/v1/endpoints/{endpoint_id}/publish", json={"payload": {"order": 1}}
    )
    assert resp.status == 202
    result = await resp.json()
    assert result["accepted"] is True
    assert result["mode"] == "queue"
    delivery_id = result["delivery_id"]

    resp = await service_client.get(f"/api/v1/deliveries/{delivery_id}")
    assert (await resp.json())["status"] == "pending"

    assert await container.scheduler.run_once() == 1

    resp = await service_client.get(f"/api/v1/deliveries/{delivery_id}")
    body = await resp.json()
    assert body["status"] == "failed"
    assert body["response_code"] == 500

    resp = await service_client.get(f"/api/v1/deliveries/{delivery_id}/history")
    history = (await resp.json())["history"]
    assert [h["attempt_number"] for h in history] == [1]

    resp = await service_client.post(f"/api/v1/deliveries/{delivery_id}/retry")
    assert await resp.json() == {"retried": False}

    resp = await service_client.get(
        "/api/v1/deliveries", params={"endpoint_id": endpoint_id, "status": "failed"}
    )
    listing = await resp.json()
    assert listing["total"] == 1
    assert listing["deliveries"][0]["id"] == delivery_id

    resp = await service_client.get("/api/v1/deliveries", params={"status": "bogus"})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_manual_retry_and_process_retries(
    service_client, deliveries_repo, db_pool, target_server
):
    endpoint_id = (await _register(service_client, url=target_server.url))["id"]
    resp = await service_client.post(
        f"/api/v1/endpoints/{endpoint_id}/publish", json={"payload": {"n": 1}}
    )
    delivery_id = uuid.UUID((await resp.json())["delivery_id"])
    await force_attempt(db_pool, delivery_id, status=DeliveryStatus.FAILED)

    resp = await service_client.post(f"/api/v1/deliveries/{delivery_id}/retry")
    assert await resp.json() == {"retried": True}

    resp = await service_client.post("/api/v1/deliveries/process-retries")
    assert await resp.json() == {"processed": 1}
    assert (await deliveries_repo.get(delivery_id)).status == DeliveryStatus.SUCCESS


@pytest.mark.asyncio
async def test_unknown_delivery(service_client):
    resp = await service_client.get(f"/api/v1/deliveries/{uuid.uuid4()}")
    assert resp.status == 404
    resp = await service_client.post(f"/api/v1/deliveries/{uuid.uuid4()}/retry")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_cleanup_endpoint(service_client):
    resp = await service_client.post("/api/v1/deliveries/cleanup", json={"older_than_days": 0})
    assert resp.status == 200
    assert await resp.json() == {"deleted": 0}
    resp = await service_client.post("/api/v1/deliveries/cleanup", json={"older_than_days": -1})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_publish_to_disabled_endpoint(service_client):
    endpoint_id = (await _register(service_client, enabled=False))["id"]
    resp = await service_client.post(
        f"/api/v1/endpoints/{endpoint_id}/publish", json={"payload": {}}
    )
    assert resp.status == 409


@pytest.mark.asyncio
async def test_publish_stream_without_pool(service_client, connector, stream_configs_repo):
    connector.always_fail = True
    await stream_configs_repo.upsert("default", StreamConfigDTO(pool_size=1))
    endpoint_id = (
        await _register(service_client, transport_mode="stream", stream_subject="webhooks.x")
    )["id"]

    resp = await service_client.post(
        f"/api/v1/endpoints/{endpoint_id}/publish", json={"payload": {}}
    )
    assert resp.status == 503
    assert (await resp.json())["error"] == "PoolExhaustedError"


@pytest.mark.asyncio
async def test_stream_config_admin(service_client, connector):
    resp = await service_client.put(
        "/api/v1/stream-configs/default",
        json={
            "servers": ["nats://nats:4222"],
            "auth_mode": "token",
            "auth_token": "t",
            "pool_size": 2,
        },
    )
    assert resp.status == 200
    body = await resp.json()
    assert body["auth_token"] == "***"
    assert body["pool_size"] == 2

    resp = await service_client.get("/api/v1/stream-configs/default/health")
    assert resp.status == 200
    health = await resp.json()
    assert health["healthy_connections"] == 2
    assert health["healthy"] is True

    resp = await service_client.get("/api/v1/stream-configs")
    assert [c["name"] for c in (await resp.json())["stream_configs"]] == ["default"]

    resp = await service_client.put("/api/v1/stream-configs/bad", json={"servers": ["http://x"]})
    assert resp.status == 400
    resp = await service_client.get("/api/v1/stream-configs/missing")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_stream_config_health_unhealthy(service_client, connector, stream_configs_repo):
    connector.always_fail = True
    await stream_configs_repo.upsert("default", StreamConfigDTO(pool_size=2))
    resp = await service_client.get("/api/v1/stream-configs/default/health")
    assert resp.status == 503
    assert (await resp.json())["healthy"] is False


@pytest.mark.asyncio
async def test_monitoring_endpoints(service_client, registry, publisher):
    endpoint = await registry.register(endpoint_config())
    await publisher.publish(endpoint.id, {})

    resp = await service_client.get("/api/v1/monitoring/backlog")
    assert (await resp.json())["pending"] == 1

    resp = await service_client.get("/api/v1/monitoring/failures", params={"limit": "5"})
    assert await resp.json() == {"failures": []}

    resp = await service_client.get("/api/v1/monitoring/stream", params={"window_hours": "6"})
    assert await resp.json() == {"window_hours": 6, "stream": []}

    resp = await service_client.get("/api/v1/monitoring/endpoints")
    (stats,) = (await resp.json())["endpoints"]
    assert stats["name"] == "orders-hook"
    assert stats["total"] == 1
    assert stats["pending"] == 1
    assert stats["success_rate"] is None

    resp = await service_client.get("/api/v1/monitoring/failures", params={"limit": "x"})
    assert resp.status == 400
