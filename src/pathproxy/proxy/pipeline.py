"""Per-request flow: resolve, authorize, build, serve from cache or fetch."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable, Mapping, Optional, Sequence
from urllib.parse import quote

import httpx
import structlog
from opentelemetry import trace

from ..common.errors import FetchError, NotAuthorized, UpstreamFailure
from ..routing.config import ProxyConfig
from ..routing.patterns import RoutePattern
from ..routing.resolver import PathResolver
from ..routing.urls import build_url
from .cache import CacheEntry, ResponseCache

LOGGER = structlog.get_logger("pathproxy.pipeline")
TRACER = trace.get_tracer("pathproxy.pipeline")

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def _is_plain_token(value: str) -> bool:
    """True when ``value`` fits a quoted-string without escaping."""
    return all(" " <= char <= "~" and char not in '"\\' for char in value)


def _isoformat(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class ProxyResponse:
    content: bytes
    media_type: str
    headers: dict[str, str] = field(default_factory=dict)
    status_code: int = 200


class RequestPipeline:
    def __init__(
        self,
        config: ProxyConfig,
        cache: ResponseCache,
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._cache = cache
        self._http_client = http_client
        self._clock = clock
        self._resolver = PathResolver(config.routes)

    async def handle(self, route_name: str, segments: Sequence[str]) -> ProxyResponse:
        with TRACER.start_as_current_span("proxy.request", attributes={"pathproxy.route": route_name}) as span:
            route = self._resolver.route(route_name)
            params = self._resolver.resolve(route_name, segments)

            if not self._config.allow_list.is_allowed(params):
                LOGGER.warning("request_not_allowed", route=route_name, params=params)
                raise NotAuthorized()

            target_url = build_url(route.template, params)
            LOGGER.debug("target_url", route=route_name, url=target_url)
            span.set_attribute("pathproxy.target_url", target_url)

            if route.caching_enabled:
                entry = await self._lookup(route, target_url)
                if entry is not None:
                    LOGGER.info("cache_hit", route=route_name, bytes=len(entry.content), age_seconds=entry.age_seconds)
                    span.set_attribute("pathproxy.cache", "HIT")
                    headers = self._base_headers(params)
                    headers.update(self._hit_headers(entry))
                    return ProxyResponse(content=entry.content, media_type=entry.content_type, headers=headers)

            content, content_type = await self._fetch(target_url)
            headers = self._base_headers(params)
            if route.caching_enabled:
                await self._store(route, target_url, content, content_type)
                headers.update(self._miss_headers(route))
                span.set_attribute("pathproxy.cache", "MISS")
            else:
                headers["X-Cache"] = "DISABLED"
            span.set_attribute("pathproxy.bytes", len(content))
            LOGGER.info("request_served", route=route_name, bytes=len(content))
            return ProxyResponse(content=content, media_type=content_type, headers=headers)

    async def _lookup(self, route: RoutePattern, target_url: str) -> Optional[CacheEntry]:
        try:
            return await self._cache.lookup(route.name, target_url)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("cache_lookup_failed", route=route.name, error=str(exc))
            return None

    async def _store(self, route: RoutePattern, target_url: str, content: bytes, content_type: str) -> None:
        try:
            await self._cache.store(route.name, target_url, content, content_type)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("cache_store_failed", route=route.name, error=str(exc))

    async def _fetch(self, target_url: str) -> tuple[bytes, str]:
        LOGGER.debug("upstream_fetch", url=target_url)
        try:
            response = await self._http_client.get(target_url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            LOGGER.error("upstream_fetch_error", url=target_url, error=str(exc))
            raise FetchError() from exc

        if not response.is_success:
            LOGGER.error("upstream_fetch_failed", url=target_url, status=response.status_code)
            raise UpstreamFailure(response.status_code)

        content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
        return response.content, content_type

    @staticmethod
    def _base_headers(params: Mapping[str, str]) -> dict[str, str]:
        headers = {"Access-Control-Allow-Origin": "*"}
        filename = params.get("filename")
        if filename:
            if _is_plain_token(filename):
                headers["Content-Disposition"] = f'attachment; filename="{filename}"'
            else:
                headers["Content-Disposition"] = f"attachment; filename*=UTF-8''{quote(filename)}"
        return headers

    @staticmethod
    def _hit_headers(entry: CacheEntry) -> dict[str, str]:
        return {
            "X-Cache": "HIT",
            "X-Cache-Age": str(entry.age_seconds),
            "X-Cache-Expires-In": str(entry.expires_in_seconds),
            "X-Cache-Expires-At": _isoformat(entry.expires_at),
            "Cache-Control": f"public, max-age={entry.expires_in_seconds}",
        }

    def _miss_headers(self, route: RoutePattern) -> dict[str, str]:
        ttl = route.cache_ttl_seconds
        expires_at = datetime.fromtimestamp(self._clock() + ttl, UTC)
        return {
            "X-Cache": "MISS",
            "X-Cache-Age": "0",
            "X-Cache-Expires-In": str(ttl),
            "X-Cache-Expires-At": _isoformat(expires_at),
            "Cache-Control": f"public, max-age={ttl}",
        }
