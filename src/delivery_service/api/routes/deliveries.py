"""Delivery status, retry and maintenance endpoints."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from aiohttp import web

from delivery_service.api.utils import (
    http_error,
    paginated_response,
    pagination_params,
    parse_uuid,
    read_json,
)
from delivery_service.core.exceptions import DeliveryServiceError
from delivery_service.domain.enums import DeliveryStatus
from delivery_service.services.dependencies import get_delivery_service, get_scheduler

routes = web.RouteTableDef()


@routes.get("/api/v1/deliveries")
async def list_deliveries(request: web.Request):
    query = request.rel_url.query
    endpoint_id = query.get("endpoint_id")
    status_raw = query.get("status")
    try:
        status = DeliveryStatus(status_raw) if status_raw else None
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid status {status_raw!r}") from exc
    service = get_delivery_service(request)
    limit, offset = pagination_params(request)
    items, total = await service.list(
        endpoint_id=parse_uuid(endpoint_id, "endpoint_id") if endpoint_id else None,
        status=status,
        limit=limit,
        offset=offset,
    )
    payload = paginated_response(
        [item.model_dump(mode="json") for item in items],
        limit=limit,
        offset=offset,
        key="deliveries",
        total=total,
    )
    return web.json_response(payload)


@routes.post("/api/v1/deliveries/process-retries")
async def process_retries(request: web.Request):
    scheduler = get_scheduler(request)
    processed = await scheduler.process_due_retries()
    return web.json_response({"processed": processed})


@routes.post("/api/v1/deliveries/cleanup")
async def cleanup_deliveries(request: web.Request):
    body = await read_json(request)
    days = body.get("older_than_days", 7)
    only_terminal = body.get("only_terminal", True)
    if not isinstance(days, int) or isinstance(days, bool) or days < 0:
        raise web.HTTPBadRequest(text="older_than_days must be a non-negative integer")
    if not isinstance(only_terminal, bool):
        raise web.HTTPBadRequest(text="only_terminal must be a boolean")
    service = get_delivery_service(request)
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    deleted = await service.cleanup_old_attempts(cutoff, only_terminal=only_terminal)
    return web.json_response({"deleted": deleted})


@routes.get("/api/v1/deliveries/{delivery_id}")
async def get_delivery(request: web.Request):
    delivery_id = parse_uuid(request.match_info["delivery_id"], "delivery_id")
    service = get_delivery_service(request)
    try:
        attempt = await service.get(delivery_id)
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.json_response(attempt.model_dump(mode="json"))


@routes.get("/api/v1/deliveries/{delivery_id}/history")
async def get_delivery_history(request: web.Request):
    delivery_id = parse_uuid(request.match_info["delivery_id"], "delivery_id")
    service = get_delivery_service(request)
    try:
        entries = await service.history(delivery_id)
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.json_response({"history": [e.model_dump(mode="json") for e in entries]})


@routes.post("/api/v1/deliveries/{delivery_id}/retry")
async def retry_delivery(request: web.Request):
    delivery_id = parse_uuid(request.match_info["delivery_id"], "delivery_id")
    service = get_delivery_service(request)
    try:
        retried = await service.retry(delivery_id)
    except DeliveryServiceError as exc:
        raise http_error(exc) from exc
    return web.json_response({"retried": retried})
