import json
from typing import Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.api.routes import get_upstream_transport
from backend.app import app
from backend.config import Settings, get_settings


class UpstreamStub:
    """Records upstream requests and answers them with ``handler``."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.handler: Optional[Callable[[httpx.Request], httpx.Response]] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.handler is None:
            raise AssertionError(f"Unexpected upstream call: {request.method} {request.url}")
        return self.handler(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self):
        return json.loads(self.last.content)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        api_key="server-key",
        upstream_mode="operation",
        upstream_base_url="https://generativelanguage.googleapis.com/v1beta",
        video_allowed_hosts=["generativelanguage.googleapis.com", "upstream"],
    )


@pytest.fixture
def upstream():
    return UpstreamStub()


@pytest.fixture
def use_settings():
    def _use(new_settings: Settings) -> Settings:
        app.dependency_overrides[get_settings] = lambda: new_settings
        return new_settings

    return _use


@pytest.fixture
def api(settings, upstream, use_settings):
    use_settings(settings)
    app.dependency_overrides[get_upstream_transport] = lambda: httpx.MockTransport(upstream)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
