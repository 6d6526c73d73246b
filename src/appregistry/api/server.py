"""
HTTP surface for the registry.

Routes:
    POST /, /v1/apps, /v2/bundles       submit a manifest or bundle
    GET  /packages, /v1/apps            package aggregates
    GET  /search?q=&limit=              search
    POST /resolve                       dependency resolution
    GET  /{id}, /v1/apps/{id}           versions, newest first
    GET  /{id}/{version}[?canonical=true]
    GET  /v1/apps/{id}/{version}, /v2/bundles/{id}/{version}
    GET  /healthz, /metrics

Registry errors map to their http_status with a JSON body
``{"error": code, "message": ..., "details": [...]}``. Anything else is
logged and answered with a bare 500.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import orjson
from aiohttp import web
from prometheus_client import generate_latest

from appregistry.contracts.entity import EntityKind
from appregistry.errors import InternalError, InvalidQueryError, InvalidSchemaError, RegistryError

if TYPE_CHECKING:
    from appregistry.metrics import RegistryMetrics
    from appregistry.service import RegistryService

logger = logging.getLogger(__name__)

# Public key of the authenticated caller, set by the fronting auth layer
ACTOR_HEADER = "X-Actor-Pubkey"
_TRUE_VALUES = frozenset({"1", "true", "yes"})

_Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _json(data: Any, status: int = 200) -> web.Response:
    return web.Response(
        body=orjson.dumps(data),
        status=status,
        content_type="application/json",
    )


def _route_name(request: web.Request) -> str:
    route = request.match_info.route
    resource = route.resource if route is not None else None
    return resource.canonical if resource is not None else "unmatched"


def _make_error_middleware() -> Any:
    @web.middleware
    async def error_middleware(request: web.Request, handler: _Handler) -> web.StreamResponse:
        try:
            return await handler(request)
        except RegistryError as e:
            if e.http_status >= 500:
                logger.warning(
                    "Request failed",
                    extra={"route": _route_name(request), "error": e.code},
                )
            return _json(e.to_dict(), status=e.http_status)
        except web.HTTPException:
            raise
        except Exception:
            logger.exception(
                "Unhandled error",
                extra={"route": _route_name(request), "method": request.method},
            )
            return _json(InternalError("internal error").to_dict(), status=500)

    return error_middleware


def _make_metrics_middleware(metrics: RegistryMetrics) -> Any:
    @web.middleware
    async def metrics_middleware(request: web.Request, handler: _Handler) -> web.StreamResponse:
        start = time.perf_counter()
        status = 500
        try:
            response = await handler(request)
            status = response.status
            return response
        except web.HTTPException as e:
            status = e.status
            raise
        finally:
            metrics.observe_request(
                _route_name(request), request.method, status, time.perf_counter() - start
            )

    return metrics_middleware


def _make_submit_handler(service: RegistryService, expected: EntityKind | None) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        body = await request.read()
        result = await service.submit(
            body, expected=expected, actor_pubkey=request.headers.get(ACTOR_HEADER)
        )
        return _json(result.to_dict(), status=201)

    return handler


def _make_versions_handler(service: RegistryService) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        return _json(await service.get_versions(request.match_info["id"]))

    return handler


def _make_entity_handler(service: RegistryService) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        canonical = request.query.get("canonical", "").lower() in _TRUE_VALUES
        doc = await service.get_entity(
            request.match_info["id"], request.match_info["version"], canonical=canonical
        )
        return _json(doc)

    return handler


def _make_packages_handler(service: RegistryService) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        return _json(await service.list_packages())

    return handler


def _make_search_handler(service: RegistryService) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        raw_limit = request.query.get("limit")
        try:
            limit = int(raw_limit) if raw_limit is not None else None
        except ValueError as e:
            raise InvalidQueryError("limit must be an integer") from e
        return _json(await service.search(request.query.get("q"), limit))

    return handler


def _make_resolve_handler(service: RegistryService) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        try:
            body = orjson.loads(await request.read())
        except orjson.JSONDecodeError as e:
            raise InvalidSchemaError("body is not valid JSON", details=[str(e)]) from e
        req = service.parse_resolve_request(body)
        resolution = await service.resolve(
            req.root.id,
            req.root.version,
            [ref.as_tuple() for ref in req.installed],
        )
        return _json(resolution.to_dict())

    return handler


def _make_healthz_handler(service: RegistryService) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        return _json(service.health())

    return handler


def _make_metrics_handler(metrics: RegistryMetrics) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(metrics.registry),
            content_type="text/plain; version=0.0.4",
            charset="utf-8",
        )

    return handler


def create_registry_app(
    service: RegistryService,
    metrics: RegistryMetrics | None = None,
    *,
    client_max_size: int | None = None,
) -> web.Application:
    """
    Create the aiohttp Application.

    Args:
        service: Registry service.
        metrics: Exporter served at /metrics and fed by request middleware.
            /metrics is not registered without one.
        client_max_size: aiohttp body cap. Defaults to twice the registry's
            payload limit so oversized bodies reach the service's own check.

    Returns:
        aiohttp.web.Application ready to be started.
    """
    middlewares = [_make_error_middleware()]
    if metrics is not None:
        middlewares.insert(0, _make_metrics_middleware(metrics))
    max_size = client_max_size or 2 * service.config.limits.max_payload_bytes
    app = web.Application(middlewares=middlewares, client_max_size=max_size)

    submit_any = _make_submit_handler(service, None)
    versions = _make_versions_handler(service)
    entity = _make_entity_handler(service)
    packages = _make_packages_handler(service)

    # Static routes first: /{id} would otherwise shadow them
    app.router.add_get("/healthz", _make_healthz_handler(service))
    if metrics is not None:
        app.router.add_get("/metrics", _make_metrics_handler(metrics))
    app.router.add_get("/packages", packages)
    app.router.add_get("/search", _make_search_handler(service))
    app.router.add_post("/resolve", _make_resolve_handler(service))
    app.router.add_post("/", submit_any)
    app.router.add_post("/v1/apps", _make_submit_handler(service, EntityKind.MANIFEST))
    app.router.add_post("/v2/bundles", _make_submit_handler(service, EntityKind.BUNDLE))
    app.router.add_get("/v1/apps", packages)
    app.router.add_get("/v1/apps/{id}", versions)
    app.router.add_get("/v1/apps/{id}/{version}", entity)
    app.router.add_get("/v2/bundles/{id}/{version}", entity)
    app.router.add_get("/{id}", versions)
    app.router.add_get("/{id}/{version}", entity)
    return app


async def start_registry_server(
    service: RegistryService,
    host: str = "0.0.0.0",
    port: int = 8080,
    *,
    metrics: RegistryMetrics | None = None,
) -> web.AppRunner:
    """
    Start the registry HTTP server.

    Returns:
        AppRunner (call stop_registry_server(runner) on shutdown).
    """
    app = create_registry_app(service, metrics)
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Registry server started on http://%s:%d", host, port)
    return runner


async def stop_registry_server(runner: web.AppRunner) -> None:
    """Stop the registry HTTP server."""
    await runner.cleanup()
    logger.info("Registry server stopped")
