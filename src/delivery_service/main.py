"""aiohttp application entrypoint."""
from __future__ import annotations

from pathlib import Path

from aiohttp import web
from aiohttp_cors import ResourceOptions, setup as cors_setup

from delivery_service.api.router import setup_routes
from delivery_service.db.migrations import create_migration_runner
from delivery_service.db.pool import close_pool, get_pool, init_pool
from delivery_service.dispatcher import start_delivery_dispatcher, stop_delivery_dispatcher
from delivery_service.logging_config import configure_logging
from delivery_service.middleware.trace import (
    REQUEST_ID_HEADER,
    TRACE_ID_HEADER,
    create_trace_middleware,
)
from delivery_service.otel import setup_otel, shutdown_otel
from delivery_service.services.dependencies import (
    CONTAINER_KEY,
    ServiceContainer,
    create_service_hooks,
)
from delivery_service.settings import settings
from delivery_service.workers import start_background_worker, stop_background_worker

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

_ALLOWED_HEADERS = (
    "Accept",
    "Accept-Language",
    "Content-Language",
    "Content-Type",
    "Authorization",
    TRACE_ID_HEADER,
    REQUEST_ID_HEADER,
)
_ALLOWED_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")


async def healthcheck(request: web.Request) -> web.Response:
    payload = {"status": "ok", "service": settings.app_name, "env": settings.env}
    container: ServiceContainer | None = request.app.get(CONTAINER_KEY)
    if container is not None:
        pools = container.stream_pools.stats()
        payload["stream_pools"] = [s.model_dump(mode="json") for s in pools]
    return web.json_response(payload)


def build_app(container: ServiceContainer | None = None) -> web.Application:
    """Application with middleware, CORS and routes but no lifecycle hooks.

    A prebuilt *container* is installed directly, which is how tests inject fakes.
    """
    app = web.Application()
    app.middlewares.append(create_trace_middleware(settings.app_name))

    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=(TRACE_ID_HEADER, REQUEST_ID_HEADER),
                allow_headers=_ALLOWED_HEADERS,
                allow_methods=_ALLOWED_METHODS,
            )
            for origin in settings.cors_allowed_origins
        },
    )

    app.router.add_get("/health", healthcheck)
    setup_routes(app)
    for route in list(app.router.routes()):
        cors.add(route)

    if container is not None:
        app[CONTAINER_KEY] = container
    return app


def create_app() -> web.Application:
    setup_otel()
    app = build_app()

    apply_migrations = create_migration_runner(
        settings,
        [
            PROJECT_ROOT / "migrations",
            Path("/app/migrations"),
        ],
    )
    init_services, close_services = create_service_hooks(settings, get_pool)

    app.on_startup.append(init_pool)
    app.on_startup.append(apply_migrations)
    app.on_startup.append(init_services)
    app.on_startup.append(start_delivery_dispatcher)
    app.on_startup.append(start_background_worker)

    app.on_cleanup.append(stop_background_worker)
    app.on_cleanup.append(stop_delivery_dispatcher)
    app.on_cleanup.append(close_services)
    app.on_cleanup.append(close_pool)
    app.on_cleanup.append(shutdown_otel)
    return app


def main() -> None:
    configure_logging()
    web.run_app(create_app(), host=settings.host, port=settings.port, access_log=None)


if __name__ == "__main__":
    main()
