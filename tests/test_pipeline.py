from __future__ import annotations

import httpx
import pytest

from pathproxy.common.errors import FetchError, NotAuthorized
from pathproxy.common.settings import ProxySettings
from pathproxy.proxy.cache import MemoryCacheStore, ResponseCache
from pathproxy.proxy.pipeline import RequestPipeline
from pathproxy.routing.config import load_config


@pytest.fixture
def pipeline_factory(upstream, clock):
    clients: list[httpx.AsyncClient] = []

    def _make(**settings_values) -> RequestPipeline:
        config = load_config(ProxySettings(_env_file=None, **settings_values))
        cache = ResponseCache(MemoryCacheStore(), config.cache_ttls, clock=clock)
        client = httpx.AsyncClient(transport=upstream.transport())
        clients.append(client)
        return RequestPipeline(config, cache, client, clock=clock)

    return _make


@pytest.mark.asyncio
async def test_hit_headers_reflect_entry_age(pipeline_factory, upstream, clock) -> None:
    pipeline = pipeline_factory(url_patterns="docs=https://docs.example.com/{1}|cache:300", use_positional_params=True)

    miss = await pipeline.handle("docs", ["guide", "intro.html"])
    clock.advance(100)
    hit = await pipeline.handle("docs", ["guide", "intro.html"])

    assert upstream.urls == ["https://docs.example.com/guide/intro.html"]
    assert miss.headers["X-Cache"] == "MISS"
    assert hit.headers["X-Cache"] == "HIT"
    assert hit.headers["X-Cache-Age"] == "100"
    assert hit.headers["X-Cache-Expires-In"] == "200"
    assert hit.headers["Cache-Control"] == "public, max-age=200"
    assert hit.headers["X-Cache-Expires-At"] == "2023-11-14T22:18:20.000Z"
    assert hit.content == miss.content


@pytest.mark.asyncio
async def test_stale_entry_is_refetched(pipeline_factory, upstream, clock) -> None:
    pipeline = pipeline_factory(url_pattern="https://docs.example.com/{page}|cache:10")

    await pipeline.handle("DEFAULT", ["page", "index"])
    clock.advance(10)
    upstream.body = b"fresh"
    response = await pipeline.handle("DEFAULT", ["page", "index"])

    assert response.headers["X-Cache"] == "MISS"
    assert response.content == b"fresh"
    assert len(upstream.requests) == 2


@pytest.mark.asyncio
async def test_authorization_precedes_fetch(pipeline_factory, upstream) -> None:
    pipeline = pipeline_factory(url_pattern="https://docs.example.com/{page}", allowed="page=public-*")
    with pytest.raises(NotAuthorized):
        await pipeline.handle("DEFAULT", ["page", "private-notes"])
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_non_ascii_filename_uses_extended_disposition(pipeline_factory) -> None:
    pipeline = pipeline_factory(url_pattern="https://files.example.com/{filename}")
    response = await pipeline.handle("DEFAULT", ["filename", "résumé.pdf"])
    assert response.headers["Content-Disposition"] == "attachment; filename*=UTF-8''r%C3%A9sum%C3%A9.pdf"


@pytest.mark.asyncio
async def test_quoted_filename_falls_back_to_extended_disposition(pipeline_factory) -> None:
    pipeline = pipeline_factory(url_pattern="https://files.example.com/{filename}")
    response = await pipeline.handle("DEFAULT", ["filename", 'a"b.txt'])
    assert response.headers["Content-Disposition"] == "attachment; filename*=UTF-8''a%22b.txt"


@pytest.mark.asyncio
async def test_captured_dot_segments_stay_below_prefix(pipeline_factory, upstream) -> None:
    pipeline = pipeline_factory(
        url_pattern="https://cdn.example.com/public/{1}",
        use_positional_params=True,
        allowed="1=docs/*",
    )
    await pipeline.handle("DEFAULT", ["docs", "..", "..", "admin", "secret"])
    assert upstream.urls == ["https://cdn.example.com/public/docs/%2E%2E/%2E%2E/admin/secret"]


@pytest.mark.asyncio
async def test_named_dot_values_are_not_collapsed(pipeline_factory, upstream) -> None:
    pipeline = pipeline_factory(url_pattern="https://github.com/{owner}/{repo}/releases")
    await pipeline.handle("DEFAULT", ["owner", "..", "repo", ".."])
    assert upstream.urls == ["https://github.com/%2E%2E/%2E%2E/releases"]


@pytest.mark.asyncio
async def test_unbuildable_target_url_is_a_fetch_error(pipeline_factory, upstream) -> None:
    pipeline = pipeline_factory(url_pattern="https://files.example.com/{name}")
    with pytest.raises(FetchError):
        await pipeline.handle("DEFAULT", ["name", "é" * 30000])
    assert upstream.requests == []
