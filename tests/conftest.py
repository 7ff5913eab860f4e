"""Shared test fixtures for roe tests."""

import json
import os
from typing import Any, Callable, Dict, List

import httpx
import pytest

from roe.client import RoeClient
from roe.config import RoeConfig

BASE_URL = "https://api.test.roe"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from ROE_* variables and the user's config file."""
    for name in list(os.environ):
        if name.startswith("ROE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ROE_CONFIG_FILE", str(tmp_path / "missing" / "config.toml"))


@pytest.fixture
def config_path(tmp_path):
    """Path for a temporary config.toml."""
    return tmp_path / "roe" / "config.toml"


def build_config(**overrides: Any) -> RoeConfig:
    values: Dict[str, Any] = {
        "api_key": "test-key",
        "organization_id": "org-1",
        "base_url": BASE_URL,
        "timeout": 5.0,
        "max_retries": 2,
        "retry_initial_interval": 0.001,
        "retry_max_interval": 0.002,
        "retry_jitter": 0.0,
    }
    values.update(overrides)
    return RoeConfig(**values)


@pytest.fixture
def make_config():
    """Factory for RoeConfig with fast retries."""
    return build_config


class Recorder:
    """MockTransport handler that records requests and replays queued responses.

    Responses are either ``httpx.Response`` objects or callables taking the
    request. The last queued response is reused once the queue runs dry.
    """

    def __init__(self, *responses: Any):
        self.responses: List[Any] = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        if len(self.responses) > 1:
            response = self.responses.pop(0)
        else:
            response = self.responses[0]
        if callable(response) and not isinstance(response, httpx.Response):
            return response(request)
        # Fresh copy so a queued response can be served more than once.
        return httpx.Response(
            response.status_code, headers=response.headers, content=response.content
        )

    @property
    def count(self) -> int:
        return len(self.requests)


def json_response(payload: Any, status_code: int = 200, **kwargs: Any) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode(), **kwargs)


@pytest.fixture
def make_client():
    """Factory for a RoeClient backed by an httpx.MockTransport."""
    clients: List[RoeClient] = []

    def factory(handler: Callable[[httpx.Request], httpx.Response], **overrides: Any) -> RoeClient:
        http_client = httpx.Client(transport=httpx.MockTransport(handler))
        client = RoeClient(config=build_config(**overrides), http_client=http_client)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close()
