"""Endpoint registry, secrets and publish endpoints."""
from __future__ import annotations

from aiohttp import web

from delivery_service.api.utils import (
    http_error,
    paginated_response,
    pagination_params,
    parse_bool,
    parse_uuid,
    read_json,
)
from delivery_service.core.exceptions import DeliveryServiceError
from delivery_service.domain.dto import PublishRequestDTO, validate_config
from delivery_service.services.dependencies import get_publisher, get_registry

routes = web.RouteTableDef()


@routes.get("/api/v1/endpoints")
async def list_endpoints(request: web.Request):
    registry = get_registry(request)
    limit, offset = pagination_params(request)
    enabled_only = parse_bool(request.rel_url.query.get("enabled_only"))
    items, total = await registry.list(enabled_only=enabled_only, limit=limit, offset=offset)
    payload = paginated_response(
        [item.model_dump(mode="json") for item in items],
        limit=limit,
        offset=offset,
        key="endpoints",
        total=total,
    )
    return web.json_response(payload)


@routes.post("/api/v1/endpoints")
async def register_endpoint(request: web.Request):
    body = await read_json(request)
    registry = get_registry(request)
    try:
        endpoint = await registry.register(body)
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.json_response(endpoint.model_dump(mode="json"), status=201)


@routes.get("/api/v1/endpoints/{endpoint_id}")
async def get_endpoint(request: web.Request):
    endpoint_id = parse_uuid(request.match_info["endpoint_id"], "endpoint_id")
    registry = get_registry(request)
    try:
        endpoint = await registry.get(endpoint_id)
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.json_response(endpoint.model_dump(mode="json"))


@routes.patch("/api/v1/endpoints/{endpoint_id}")
async def update_endpoint(request: web.Request):
    endpoint_id = parse_uuid(request.match_info["endpoint_id"], "endpoint_id")
    body = await read_json(request)
    registry = get_registry(request)
    try:
        updated = await registry.update(endpoint_id, body)
        if not updated:
            raise web.HTTPNotFound(text=f"Endpoint {endpoint_id} not found")
        endpoint = await registry.get(endpoint_id)
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.json_response(endpoint.model_dump(mode="json"))


@routes.delete("/api/v1/endpoints/{endpoint_id}")
async def delete_endpoint(request: web.Request):
    endpoint_id = parse_uuid(request.match_info["endpoint_id"], "endpoint_id")
    registry = get_registry(request)
    if not await registry.delete(endpoint_id):
        raise web.HTTPNotFound(text=f"Endpoint {endpoint_id} not found")
    return web.Response(status=204)


@routes.get("/api/v1/endpoints/{endpoint_id}/secrets")
async def list_secrets(request: web.Request):
    endpoint_id = parse_uuid(request.match_info["endpoint_id"], "endpoint_id")
    registry = get_registry(request)
    try:
        names = await registry.list_secret_names(endpoint_id)
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.json_response({"secrets": names})


@routes.put("/api/v1/endpoints/{endpoint_id}/secrets/{name}")
async def put_secret(request: web.Request):
    endpoint_id = parse_uuid(request.match_info["endpoint_id"], "endpoint_id")
    name = request.match_info["name"]
    body = await read_json(request)
    value = body.get("value")
    if not isinstance(value, str) or not value:
        raise web.HTTPBadRequest(text="value must be a non-empty string")
    registry = get_registry(request)
    try:
        await registry.set_secret(endpoint_id, name, value)
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.Response(status=204)


@routes.delete("/api/v1/endpoints/{endpoint_id}/secrets/{name}")
async def delete_secret(request: web.Request):
    endpoint_id = parse_uuid(request.match_info["endpoint_id"], "endpoint_id")
    registry = get_registry(request)
    if not await registry.delete_secret(endpoint_id, request.match_info["name"]):
        raise web.HTTPNotFound(text="Secret not found")
    return web.Response(status=204)


@routes.post("/api/v1/endpoints/{endpoint_id}/publish")
async def publish(request: web.Request):
    endpoint_id = parse_uuid(request.match_info["endpoint_id"], "endpoint_id")
    body = await read_json(request)
    publisher = get_publisher(request)
    try:
        dto = validate_config(PublishRequestDTO, body)
        result = await publisher.publish(
            endpoint_id,
            dto.payload,
            transport=dto.transport,
            subject=dto.subject,
            message_id=dto.message_id,
            source=dto.source,
        )
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.json_response(result.model_dump(mode="json"), status=202)
