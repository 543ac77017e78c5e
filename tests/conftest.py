"""Shared fixtures: temp data dir and a fake HTTP adapter instead of a live server."""

import json
import threading
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import pytest
import requests
from jose import jwt
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from akclient.core.config import Settings
from akclient.client.app import ClientApp
from akclient.client.gateway import RequestGateway
from akclient.client.preferences import Preferences
from akclient.client.profile_store import ProfileStore
from akclient.client.session import AuthSession
from akclient.client.transport import TransportManager


class FakeAdapter(BaseAdapter):
    """Answers requests from a table of (method, path) routes and records them."""

    def __init__(self):
        super().__init__()
        self.routes: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}
        self.calls: List[Dict[str, Any]] = []
        # held 路由的请求到达后置位
        self.arrived = threading.Event()

    def add(
        self,
        method: str,
        path: str,
        status: Optional[int] = 200,
        json_body: Any = None,
        body: bytes = b"",
        exc: Optional[Exception] = None,
        hold: Optional[threading.Event] = None,
    ):
        if json_body is not None:
            body = json.dumps(json_body).encode("utf-8")
        self.routes.setdefault((method.upper(), path), []).append(
            {"status": status, "body": body, "exc": exc, "hold": hold}
        )

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.calls.append({"request": request, "timeout": timeout, "verify": verify})
        queue = self.routes.get((request.method, urlsplit(request.url).path))
        if not queue:
            route = {"status": 404, "body": b'{"detail":"Not Found"}', "exc": None, "hold": None}
        elif len(queue) > 1:
            route = queue.pop(0)
        else:
            route = queue[0]

        if route["hold"] is not None:
            self.arrived.set()
            route["hold"].wait(5)

        if route["exc"] is not None:
            raise route["exc"]

        resp = requests.Response()
        resp.status_code = route["status"]
        resp._content = route["body"]
        resp.headers = CaseInsensitiveDict({"Content-Type": "application/json"})
        resp.url = request.url
        resp.request = request
        resp.encoding = "utf-8"
        return resp

    def close(self):
        pass

    @property
    def last_request(self) -> requests.PreparedRequest:
        return self.calls[-1]["request"]

    def requests_to(self, path: str) -> List[requests.PreparedRequest]:
        return [c["request"] for c in self.calls if urlsplit(c["request"].url).path == path]


def make_token(**claims) -> str:
    payload = {
        "sub": "user-123",
        "username": "testuser",
        "email": "test@example.com",
        "is_admin": False,
        "totp_enabled": True,
    }
    payload.update(claims)
    return jwt.encode(payload, "test-secret", algorithm="HS256")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(DATA_DIR=tmp_path)


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def mounts(adapter):
    return {"http://": adapter, "https://": adapter}


@pytest.fixture
def preferences(settings) -> Preferences:
    return Preferences(settings.DATA_DIR)


@pytest.fixture
def transport(preferences, settings, mounts) -> TransportManager:
    return TransportManager(preferences, settings, mounts=mounts)


@pytest.fixture
def gateway(transport) -> RequestGateway:
    return RequestGateway(transport)


@pytest.fixture
def store(preferences, transport) -> ProfileStore:
    return ProfileStore(preferences, transport)


@pytest.fixture
def auth(gateway, transport) -> AuthSession:
    return AuthSession(gateway, transport)


@pytest.fixture
def app(settings, mounts) -> ClientApp:
    return ClientApp(settings=settings, mounts=mounts)
