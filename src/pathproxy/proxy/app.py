"""HTTP front end for the templated proxy and its cache management API."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from ..common.errors import MalformedPath, ProxyError, UnknownRoute
from ..common.http_security import require_bearer_token
from ..common.observability import configure_logging, configure_tracing, instrument_app, instrument_upstream_client
from ..common.schemas import CacheCleanupResult, CacheInvalidationResult, ErrorResponse
from ..common.settings import ProxySettings
from ..routing.config import ProxyConfig, load_config, log_config_summary
from .cache import CacheStore, LocalCacheStore, ResponseCache
from .pipeline import RequestPipeline
from .sweeper import CacheSweeper

LOGGER = structlog.get_logger("pathproxy.app")


def split_segments(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


class ProxyState:
    def __init__(
        self,
        settings: ProxySettings,
        config: ProxyConfig,
        cache: ResponseCache,
        pipeline: RequestPipeline,
    ) -> None:
        self.settings = settings
        self.config = config
        self.cache = cache
        self.pipeline = pipeline


def get_state(request: Request) -> ProxyState:
    return request.app.state.proxy_state  # type: ignore[attr-defined]


def require_cache_admin(request: Request, state: ProxyState = Depends(get_state)) -> None:
    api_key = state.settings.cache_api_key
    require_bearer_token(request, api_key.get_secret_value() if api_key else None)


def create_app(
    settings: Optional[ProxySettings] = None,
    *,
    store: Optional[CacheStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the proxy application.

    Raises :class:`~pathproxy.common.errors.ConfigurationError` when the route
    table cannot be built, so a misconfigured process never starts serving.
    """
    settings = settings or ProxySettings()
    configure_logging(settings)
    tracer_provider = configure_tracing(settings)
    config = load_config(settings)
    cache = ResponseCache(store or LocalCacheStore(settings.cache_directory), config.cache_ttls)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.upstream_timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )
        instrument_upstream_client(http_client, tracer_provider)
        app.state.proxy_state = ProxyState(settings, config, cache, RequestPipeline(config, cache, http_client))
        log_config_summary(config)

        sweeper: Optional[CacheSweeper] = None
        if config.caching_enabled:
            sweeper = CacheSweeper(
                cache,
                interval_seconds=settings.cache_cleanup_interval_seconds,
                initial_delay_seconds=settings.cache_cleanup_initial_delay_seconds,
            )
            sweeper.start()
        LOGGER.info("proxy_started", host=settings.host, port=settings.port)
        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()
            await http_client.aclose()

    # Every GET path may belong to the upstream, so no docs routes.
    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    instrument_app(app, tracer_provider)

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
        LOGGER.warning("request_failed", path=request.url.path, status=exc.status_code, error=exc.message)
        return JSONResponse(ErrorResponse(error=exc.message).model_dump(), status_code=exc.status_code)

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            LOGGER.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            LOGGER.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            LOGGER.warning("http_request", **log_kwargs)
        else:
            LOGGER.info("http_request", **log_kwargs)
        return response

    @app.delete("/invalidate-cache/{service}", response_model=CacheInvalidationResult)
    async def invalidate_cache(
        service: str,
        _: None = Depends(require_cache_admin),
        state: ProxyState = Depends(get_state),
    ) -> CacheInvalidationResult:
        if service not in state.config.routes:
            raise UnknownRoute(service)
        try:
            deleted = await state.cache.invalidate_route(service)
        except OSError as exc:
            LOGGER.error("cache_invalidate_failed", route=service, error=str(exc))
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Cache operation failed") from exc
        return CacheInvalidationResult(service=service, deleted=deleted)

    @app.post("/cleanup-cache", response_model=CacheCleanupResult)
    async def cleanup_cache(
        _: None = Depends(require_cache_admin),
        state: ProxyState = Depends(get_state),
    ) -> CacheCleanupResult:
        deleted = await state.cache.sweep_expired()
        return CacheCleanupResult(deleted=deleted)

    async def _proxy(state: ProxyState, route_name: str, path: str) -> Response:
        result = await state.pipeline.handle(route_name, split_segments(path))
        # Upstream Content-Type is relayed verbatim.
        headers = {**result.headers, "Content-Type": result.media_type}
        return Response(content=result.content, status_code=result.status_code, headers=headers)

    if config.multi_route:

        @app.get("/service/{service}/{path:path}")
        async def proxy_service(service: str, path: str, state: ProxyState = Depends(get_state)) -> Response:
            return await _proxy(state, service, path)

    else:
        default_route = next(iter(config.routes))

        @app.get("/{path:path}")
        async def proxy_default(path: str, state: ProxyState = Depends(get_state)) -> Response:
            if not split_segments(path):
                raise MalformedPath("Path required")
            return await _proxy(state, default_route, path)

    return app
