"""Helper utilities for API handlers."""
from __future__ import annotations

import json
from typing import Any
from uuid import UUID

from aiohttp import web

from delivery_service.core.exceptions import (
    DeliveryServiceError,
    EndpointDisabledError,
    InvalidConfigurationError,
    NotFoundError,
    PoolExhaustedError,
    TransportFailureError,
)


async def read_json(request: web.Request) -> dict[str, Any]:
    """Parse JSON body from request, raising HTTPBadRequest on invalid input."""
    try:
        data = await request.json()
    except Exception as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value if isinstance(value, str) else str(value))
    except (ValueError, TypeError) as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


def parse_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def pagination_params(
    request: web.Request,
    *,
    default_limit: int = 50,
    max_limit: int = 100,
) -> tuple[int, int]:
    query = request.rel_url.query
    try:
        limit = int(query.get("limit", str(default_limit)))
        offset = int(query.get("offset", "0"))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit and offset must be integers") from exc
    if limit <= 0:
        limit = default_limit
    limit = min(limit, max_limit)
    if offset < 0:
        offset = 0
    return limit, offset


def paginated_response(
    items: list[Any],
    *,
    limit: int,
    offset: int,
    key: str,
    total: int,
) -> dict[str, Any]:
    page = offset // limit + 1 if limit else 1
    return {
        key: items,
        "total": total,
        "page": page,
        "page_size": limit,
    }


def _error_body(exc: Exception, **extra: Any) -> str:
    return json.dumps({"error": type(exc).__name__, "message": str(exc), **extra})


def http_error(exc: DeliveryServiceError) -> web.HTTPException:
    """Translate a domain error into the matching HTTP exception."""
    if isinstance(exc, InvalidConfigurationError):
        return web.HTTPBadRequest(
            text=_error_body(exc, details=exc.errors), content_type="application/json"
        )
    if isinstance(exc, NotFoundError):
        return web.HTTPNotFound(text=_error_body(exc), content_type="application/json")
    if isinstance(exc, EndpointDisabledError):
        return web.HTTPConflict(text=_error_body(exc), content_type="application/json")
    if isinstance(exc, (PoolExhaustedError, TransportFailureError)):
        return web.HTTPServiceUnavailable(text=_error_body(exc), content_type="application/json")
    return web.HTTPInternalServerError(text=_error_body(exc), content_type="application/json")
