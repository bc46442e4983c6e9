import os

# Configure the environment BEFORE any gatekeeper imports
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"

import hashlib  # noqa: E402
import hmac  # noqa: E402
import json  # noqa: E402
import time  # noqa: E402
from collections.abc import Callable  # noqa: E402
from typing import Any  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from starlette.applications import Starlette  # noqa: E402
from starlette.responses import PlainTextResponse  # noqa: E402
from starlette.routing import Route  # noqa: E402

import gatekeeper.models  # noqa: E402,F401
from gatekeeper.config import Settings  # noqa: E402
from gatekeeper.context import build_context  # noqa: E402
from gatekeeper.db import Base, get_engine  # noqa: E402
from gatekeeper.services.auth_provider import AuthProviderClient  # noqa: E402
from gatekeeper.services.session_bridge import encode_session_cookie  # noqa: E402

_test_engine = get_engine("sqlite+pysqlite:///:memory:")
_TestSessionLocal = sessionmaker(bind=_test_engine, autoflush=False, autocommit=False)

Base.metadata.create_all(_test_engine)

PRICE_IDS = {
    "starter": "price_starter",
    "growth": "price_growth",
    "pro": "price_pro",
}
WEBHOOK_SECRET = "whsec_test_secret"
BYPASS_SECRET = "maintenance-bypass-0123456789"


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "environment": "test",
        "database_url": "sqlite+pysqlite:///:memory:",
        "auth_url": "https://auth.example.test",
        "auth_anon_key": "anon-key",
        "auth_service_role_key": "service-role-key",
        "auth_timeout_seconds": 2.0,
        "settings_timeout_seconds": 1.0,
        "maintenance_bypass_secret": BYPASS_SECRET,
        "stripe_secret_key": "sk_test_123",
        "stripe_webhook_secret": WEBHOOK_SECRET,
        "stripe_price_ids": dict(PRICE_IDS),
    }
    values.update(overrides)
    return Settings(**values)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``stripe-signature`` header the way Stripe signs deliveries."""
    ts = timestamp or int(time.time())
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


class FakeAuthProvider:
    """In-memory GoTrue REST API served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.users: dict[str, dict] = {}
        self.access_tokens: dict[str, str] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None
        self.respond_with: Callable[[httpx.Request], httpx.Response] | None = None
        self._issued = 0

    def add_user(
        self,
        user_id: str,
        roles: Any = None,
        *,
        app_metadata: dict | None = None,
        user_metadata: dict | None = None,
    ) -> dict:
        if app_metadata is None:
            app_metadata = {"roles": roles} if roles is not None else {}
        payload = {
            "id": user_id,
            "email": f"{user_id}@example.com",
            "role": "authenticated",
            "app_metadata": app_metadata,
            "user_metadata": user_metadata or {},
        }
        self.users[user_id] = payload
        return payload

    def issue(self, user_id: str, expires_at: int | None = None) -> dict:
        self._issued += 1
        access_token = f"access-{user_id}-{self._issued}"
        refresh_token = f"refresh-{user_id}-{self._issued}"
        self.access_tokens[access_token] = user_id
        self.refresh_tokens[refresh_token] = user_id
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": expires_at if expires_at is not None else int(time.time()) + 3600,
            "token_type": "bearer",
        }

    def cookie_for(self, user_id: str, expires_at: int | None = None) -> str:
        return encode_session_cookie(self.issue(user_id, expires_at=expires_at))

    def revoke(self, access_token: str) -> None:
        self.access_tokens.pop(access_token, None)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with)
        if self.respond_with is not None:
            return self.respond_with(request)
        path = request.url.path
        if path == "/auth/v1/user":
            token = request.headers.get("authorization", "").removeprefix("Bearer ")
            user_id = self.access_tokens.get(token)
            if user_id is None:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            return httpx.Response(200, json=self.users[user_id])
        if path == "/auth/v1/token":
            body = json.loads(request.content)
            user_id = self.refresh_tokens.pop(body.get("refresh_token"), None)
            if user_id is None:
                return httpx.Response(400, json={"error": "invalid_grant"})
            session = self.issue(user_id)
            session.pop("expires_at")
            return httpx.Response(
                200, json={**session, "expires_in": 3600, "user": self.users[user_id]}
            )
        if path.startswith("/auth/v1/admin/users/"):
            user = self.users.get(path.rsplit("/", 1)[-1])
            if user is None:
                return httpx.Response(404, json={"msg": "User not found"})
            if request.method == "PUT":
                user["app_metadata"] = json.loads(request.content)["app_metadata"]
            return httpx.Response(200, json=user)
        return httpx.Response(404)


class FakeBillingProvider:
    """Returns canned Stripe subscriptions keyed by id."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, dict] = {}
        self.calls: list[str] = []
        self.error: Exception | None = None

    def add_subscription(
        self,
        subscription_id: str,
        price_id: str,
        status: str = "active",
        current_period_end: int = 1_767_225_600,
    ) -> dict:
        subscription = {
            "id": subscription_id,
            "object": "subscription",
            "status": status,
            "customer": "cus_123",
            "cancel_at_period_end": False,
            "current_period_end": current_period_end,
            "items": {"data": [{"price": {"id": price_id}}]},
        }
        self.subscriptions[subscription_id] = subscription
        return subscription

    def is_configured(self) -> bool:
        return True

    def retrieve_subscription(self, subscription_id: str) -> dict:
        self.calls.append(subscription_id)
        if self.error is not None:
            raise self.error
        return self.subscriptions[subscription_id]


def _downstream_app() -> Starlette:
    async def page(request):
        return PlainTextResponse(f"page:{request.url.path}")

    return Starlette(routes=[Route("/{path:path}", page)])


@pytest.fixture(scope="session")
def engine():
    return _test_engine


@pytest.fixture()
def session_factory():
    return _TestSessionLocal


@pytest.fixture(autouse=True)
def _clean_tables(engine):
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def settings():
    return make_settings()


@pytest.fixture()
def auth_provider():
    return FakeAuthProvider()


@pytest.fixture()
def auth_client(settings, auth_provider):
    return AuthProviderClient(
        settings,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(auth_provider.handler)),
    )


@pytest.fixture()
def billing_provider():
    return FakeBillingProvider()


@pytest.fixture()
def context(settings, session_factory, auth_client, billing_provider):
    return build_context(
        settings,
        session_factory,
        auth_client=auth_client,
        billing_provider=billing_provider,
    )


@pytest.fixture()
def client(context):
    """Test client with the gatekeeper in front of a catch-all page app."""
    from gatekeeper.main import create_app

    app = create_app(context=context, downstream=_downstream_app())
    with TestClient(app, raise_server_exceptions=False, follow_redirects=False) as test_client:
        yield test_client
