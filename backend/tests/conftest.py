"""
Shared fixtures: in-memory database, a fake Graph API and a controllable clock.
"""
import os

# Settings are read once at import time; point them at test values first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("DATABASE_PUBLIC_URL", None)
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("META_APP_ID", "test-app-id")
os.environ.setdefault("META_APP_SECRET", "test-app-secret")
os.environ.setdefault("HANDOFF_COOKIE_SECRET", "test-handoff-secret")

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from inboop.database import Base
from inboop.models import User
from inboop.services.graph_client import GraphClient

GRAPH_VERSION_PREFIX = "/v21.0"
FAKE_GRAPH_BASE_URL = f"https://graph.facebook.com{GRAPH_VERSION_PREFIX}"

RouteResult = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGraphAPI:
    """
    httpx.MockTransport handler standing in for graph.facebook.com.

    Routes are keyed by path without the version prefix, e.g. "/me/accounts".
    Every request is recorded so tests can assert on outbound call counts.
    """

    def __init__(self):
        self.routes: Dict[str, RouteResult] = {}
        self.requests: List[httpx.Request] = []

    def add(self, path: str, body: Optional[Any] = None, status_code: int = 200) -> None:
        if body is None:
            self.routes[path] = httpx.Response(status_code)
        else:
            self.routes[path] = httpx.Response(status_code, json=body)

    def add_error(self, path: str, code: int, message: str = "Graph error", status_code: int = 400, **extra) -> None:
        error = {"code": code, "message": message, "type": "OAuthException", "fbtrace_id": "trace-123", **extra}
        self.add(path, {"error": error}, status_code=status_code)

    def fail(self, path: str, exc: Exception) -> None:
        self.routes[path] = exc

    def handle(self, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[path] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith(GRAPH_VERSION_PREFIX):
            path = path[len(GRAPH_VERSION_PREFIX):]
        route = self.routes.get(path)
        if route is None:
            return httpx.Response(
                400,
                json={"error": {"code": 803, "message": f"Unknown path {path}", "type": "OAuthException"}},
            )
        if isinstance(route, Exception):
            raise route
        if callable(route) and not isinstance(route, httpx.Response):
            return route(request)
        return route

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == f"{GRAPH_VERSION_PREFIX}{path}"]

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def client(self) -> GraphClient:
        return GraphClient(http_client=self.http_client(), base_url=FAKE_GRAPH_BASE_URL, timeout=5.0)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user(db_session) -> User:
    user = User(email="owner@example.com", name="Shop Owner")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def graph_api() -> FakeGraphAPI:
    return FakeGraphAPI()


@pytest.fixture
def two_pages_second_linked(graph_api) -> FakeGraphAPI:
    """Two Pages; only the second has an Instagram Business Account (ig_42 / shop_demo)."""
    graph_api.add("/me/accounts", {
        "data": [
            {"id": "page_1", "name": "Personal Page", "access_token": "page-token-1"},
            {"id": "page_2", "name": "Demo Shop", "access_token": "page-token-2"},
        ]
    })
    graph_api.add("/page_1", {"id": "page_1"})
    graph_api.add("/page_2", {"id": "page_2", "instagram_business_account": {"id": "ig_42"}})
    graph_api.add("/ig_42", {"id": "ig_42", "username": "shop_demo", "name": "Demo Shop"})
    return graph_api
