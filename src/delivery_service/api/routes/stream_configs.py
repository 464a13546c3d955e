"""Stream configuration admin endpoints."""
from __future__ import annotations

from aiohttp import web

from delivery_service.api.utils import http_error, read_json
from delivery_service.core.exceptions import DeliveryServiceError
from delivery_service.domain.models import StreamConfig
from delivery_service.services.dependencies import get_stream_config_service

routes = web.RouteTableDef()

_SECRET_FIELDS = {"auth_token", "nkey_seed"}


def _public(config: StreamConfig) -> dict:
    data = config.model_dump(mode="json")
    for field in _SECRET_FIELDS:
        if data.get(field):
            data[field] = "***"
    return data


@routes.get("/api/v1/stream-configs")
async def list_stream_configs(request: web.Request):
    service = get_stream_config_service(request)
    configs = await service.list()
    return web.json_response({"stream_configs": [_public(c) for c in configs]})


@routes.put("/api/v1/stream-configs/{name}")
async def put_stream_config(request: web.Request):
    body = await read_json(request)
    service = get_stream_config_service(request)
    try:
        config = await service.configure(request.match_info["name"], body)
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.json_response(_public(config))


@routes.get("/api/v1/stream-configs/{name}")
async def get_stream_config(request: web.Request):
    service = get_stream_config_service(request)
    try:
        config = await service.get(request.match_info["name"])
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.json_response(_public(config))


@routes.get("/api/v1/stream-configs/{name}/health")
async def stream_config_health(request: web.Request):
    service = get_stream_config_service(request)
    try:
        stats = await service.health(request.match_info["name"])
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.json_response(stats.model_dump(mode="json"), status=200 if stats.healthy else 503)
