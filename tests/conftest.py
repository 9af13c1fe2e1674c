"""Shared fixtures: deterministic runtimes and an httpx-mocked backend."""
from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from edgeinfer.client import EdgeClient
from edgeinfer.config import Settings
from edgeinfer.device import DeviceIdentityStore, DeviceProfile
from edgeinfer.providers import MockEmbeddingRuntime, MockInferenceRuntime

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeBackend:
    """Answer requests by ``(method, path)`` and remember every call."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.route("POST", "/api/auth/sdk", {"token": "tok-123", "organization": {"id": "org-1"}})
        self.route("POST", "/api/devices/register", {"ok": True})
        self.route("POST", "/api/devices/telemetry", {"ok": True})
        self.route("POST", "/api/telemetry", {"ok": True})
        self.route("HEAD", "/api/health", {})
        self.route("GET", "/api/health", {"status": "ok"})

    def route(self, method: str, path: str, response: Union[Handler, Dict[str, Any]], status: int = 200) -> None:
        if callable(response):
            self.routes[(method, path)] = response
        else:
            payload = response
            self.routes[(method, path)] = lambda request: httpx.Response(status, json=payload)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": f"no route for {request.method} {request.url.path}"})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls(self, path: str, method: Optional[str] = None) -> List[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.url.path == path and (method is None or request.method == method)
        ]

    def bodies(self, path: str) -> List[Dict[str, Any]]:
        return [json.loads(request.content) for request in self.calls(path, "POST")]


def build_profile(memory_mb: int = 8192, cpu_cores: int = 8, **overrides: Any) -> DeviceProfile:
    fields: Dict[str, Any] = {
        "cpu_cores": cpu_cores,
        "memory_mb": memory_mb,
        "estimated_storage_mb": 50000,
        "platform": "python",
        "os": "Linux 6.1",
        "architecture": "x86_64",
        "cpu_model": "Test CPU",
        "runtime_name": "python",
        "runtime_version": "3.12.0",
        "network_type": "ethernet",
        "timezone": "UTC",
        "parallel_runtime_available": True,
        "gpu_compute_available": False,
        "recommended_precision": "q4",
        "recommended_context_window": 2048,
        "fingerprint": "f" * 32,
    }
    fields.update(overrides)
    return DeviceProfile(**fields)


@pytest.fixture
def make_profile():
    return build_profile


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(api_url="https://api.test", home=tmp_path, probe_latency=False)


@pytest.fixture
def make_client(settings, fake_backend, tmp_path):
    """Build an :class:`EdgeClient` wired to mock runtimes and the fake backend."""

    def _factory(**kwargs: Any) -> EdgeClient:
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("runtime", MockInferenceRuntime())
        kwargs.setdefault("embedder", MockEmbeddingRuntime(dimension=16))
        kwargs.setdefault("transport", fake_backend.transport)
        kwargs.setdefault("identity_store", DeviceIdentityStore(tmp_path / "device-id"))
        return EdgeClient("sk-test", **kwargs)

    return _factory
