from __future__ import annotations

from contextlib import ExitStack
from pathlib import Path
from typing import Callable, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from pathproxy.common.settings import ProxySettings
from pathproxy.proxy.app import create_app

CACHE_API_KEY = "test-cache-key"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """Records outbound requests and answers them with a canned response."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.body = b"upstream-body"
        self.content_type: str | None = "application/zip"
        self.error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        headers = {"content-type": self.content_type} if self.content_type else {}
        return httpx.Response(self.status_code, content=self.body, headers=headers)

    @property
    def urls(self) -> list[str]:
        return [str(request.url) for request in self.requests]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., ProxySettings]:
    def _make(**overrides) -> ProxySettings:
        values = {
            "cache_directory": tmp_path / "cache",
            "cache_api_key": CACHE_API_KEY,
            "log_level": "WARNING",
        }
        values.update(overrides)
        return ProxySettings(_env_file=None, **values)

    return _make


@pytest.fixture
def make_client(make_settings, upstream: FakeUpstream) -> Iterator[Callable[..., TestClient]]:
    with ExitStack() as stack:

        def _make(**overrides) -> TestClient:
            app = create_app(make_settings(**overrides), transport=upstream.transport())
            return stack.enter_context(TestClient(app))

        yield _make
