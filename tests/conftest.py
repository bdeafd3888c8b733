"""Pytest fixtures: a fake Dropcart API behind httpx.MockTransport."""

import httpx
import pytest

from dropcart_server.auth import AuthManager
from dropcart_server.dropcart_client import DropcartClient
from dropcart_server.models import AuthCredentials

PUBLIC_KEY = "test-public-key"


class FakeDropcartAPI:
    """Answers requests from a table of ``(method, path) -> (status, json)``."""

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []

    def add(self, method, path, json=None, status=200):
        self.routes[(method, f"/v2/{path}")] = (status, json)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"error": "not found"})
        status, body = self.routes[key]
        return httpx.Response(status, json=body)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def api():
    return FakeDropcartAPI()


@pytest.fixture
def auth_manager(tmp_path, monkeypatch):
    monkeypatch.delenv("DROPCART_PUBLIC_KEY", raising=False)
    return AuthManager(
        session_file=str(tmp_path / "session.json"),
        credentials=AuthCredentials(public_key=PUBLIC_KEY, country="NL"),
    )


@pytest.fixture
def client(api, auth_manager):
    dropcart_client = DropcartClient(
        auth_manager,
        endpoint="https://api.test",
        transport=httpx.MockTransport(api),
    )
    yield dropcart_client
    dropcart_client.close()
