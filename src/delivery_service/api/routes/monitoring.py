"""Read-only monitoring endpoints."""
from __future__ import annotations

from datetime import timedelta

from aiohttp import web

from delivery_service.api.utils import parse_uuid
from delivery_service.services.dependencies import get_monitoring_service

routes = web.RouteTableDef()


def _int_param(request: web.Request, name: str, default: int, *, maximum: int) -> int:
    raw = request.rel_url.query.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"{name} must be an integer") from exc
    if value <= 0:
        raise web.HTTPBadRequest(text=f"{name} must be positive")
    return min(value, maximum)


@routes.get("/api/v1/monitoring/endpoints")
async def endpoint_stats(request: web.Request):
    endpoint_id = request.rel_url.query.get("endpoint_id")
    service = get_monitoring_service(request)
    stats = await service.endpoint_stats(
        parse_uuid(endpoint_id, "endpoint_id") if endpoint_id else None
    )
    return web.json_response({"endpoints": [s.model_dump(mode="json") for s in stats]})


@routes.get("/api/v1/monitoring/backlog")
async def backlog(request: web.Request):
    service = get_monitoring_service(request)
    stats = await service.backlog()
    return web.json_response(stats.model_dump(mode="json"))


@routes.get("/api/v1/monitoring/failures")
async def recent_failures(request: web.Request):
    limit = _int_param(request, "limit", 100, maximum=1000)
    service = get_monitoring_service(request)
    failures = await service.recent_failures(limit=limit)
    return web.json_response({"failures": [f.model_dump(mode="json") for f in failures]})


@routes.get("/api/v1/monitoring/stream")
async def stream_stats(request: web.Request):
    hours = _int_param(request, "window_hours", 24, maximum=24 * 30)
    service = get_monitoring_service(request)
    stats = await service.stream_stats(window=timedelta(hours=hours))
    return web.json_response(
        {"window_hours": hours, "stream": [s.model_dump(mode="json") for s in stats]}
    )
