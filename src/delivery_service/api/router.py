"""API router composition for aiohttp."""
from __future__ import annotations

from aiohttp import web

from delivery_service.api.routes import deliveries, endpoints, monitoring, stream_configs

ROUTE_MODULES = [
    endpoints,
    deliveries,
    monitoring,
    stream_configs,
]


def setup_routes(app: web.Application) -> None:
    """Attach domain routes to the aiohttp application."""
    for module in ROUTE_MODULES:
        app.add_routes(module.routes)
