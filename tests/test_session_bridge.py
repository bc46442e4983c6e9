"""Tests for the session cookie bridge against the fake auth provider."""

import base64
import json
import time

import httpx
import pytest

from gatekeeper.services.auth_provider import AuthProviderUnavailable
from gatekeeper.services.session_bridge import (
    MalformedSessionCookie,
    SessionBridge,
    decode_session_cookie,
    encode_session_cookie,
)

COOKIE = "sb-auth-token"


@pytest.fixture()
def bridge(settings, auth_client):
    return SessionBridge(settings, auth_client)


class TestCookieCodec:
    def test_base64_round_trip_fields(self):
        raw = encode_session_cookie(
            {"access_token": "a", "refresh_token": "r", "expires_at": 123}
        )
        assert raw.startswith("base64-")
        assert "=" not in raw
        stored = decode_session_cookie(raw)
        assert (stored.access_token, stored.refresh_token, stored.expires_at) == ("a", "r", 123)

    def test_plain_json_cookie(self):
        stored = decode_session_cookie(json.dumps({"access_token": "tok"}))
        assert stored.access_token == "tok"
        assert stored.refresh_token is None
        assert not stored.is_expired(time.time())

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "base64-!!!",
            json.dumps(["access_token"]),
            json.dumps({"refresh_token": "r"}),
            "base64-" + base64.urlsafe_b64encode(b"{bad").decode(),
        ],
    )
    def test_malformed(self, raw):
        with pytest.raises(MalformedSessionCookie):
            decode_session_cookie(raw)

    def test_expiry_uses_skew(self):
        stored = decode_session_cookie(json.dumps({"access_token": "a", "expires_at": 1000}))
        assert stored.is_expired(995)
        assert not stored.is_expired(980)


class TestResolve:
    @pytest.mark.asyncio
    async def test_no_cookie_is_anonymous(self, bridge, auth_provider):
        result = await bridge.resolve({})
        assert result.identity is None
        assert result.cookies == []
        assert auth_provider.requests == []

    @pytest.mark.asyncio
    async def test_valid_session(self, bridge, auth_provider):
        auth_provider.add_user("u1", ["admin"])
        result = await bridge.resolve({COOKIE: auth_provider.cookie_for("u1")})
        assert result.identity.subject_id == "u1"
        assert result.identity.app_metadata == {"roles": ["admin"]}
        assert result.cookies == []

    @pytest.mark.asyncio
    async def test_malformed_cookie_is_cleared(self, bridge):
        result = await bridge.resolve({COOKIE: "garbage"})
        assert result.identity is None
        [cookie] = result.cookies
        assert cookie.name == COOKIE
        assert cookie.is_delete

    @pytest.mark.asyncio
    async def test_expired_session_is_refreshed(self, bridge, auth_provider):
        auth_provider.add_user("u1")
        raw = auth_provider.cookie_for("u1", expires_at=int(time.time()) - 60)
        result = await bridge.resolve({COOKIE: raw})
        assert result.identity.subject_id == "u1"
        [cookie] = result.cookies
        assert not cookie.is_delete
        assert not cookie.http_only
        refreshed = decode_session_cookie(cookie.value)
        assert refreshed.access_token != decode_session_cookie(raw).access_token
        assert refreshed.expires_at > time.time()

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_is_cleared(self, bridge):
        raw = json.dumps({"access_token": "stale", "expires_at": 1})
        result = await bridge.resolve({COOKIE: raw})
        assert result.identity is None
        assert result.cookies[0].is_delete

    @pytest.mark.asyncio
    async def test_rejected_token_retries_with_refresh(self, bridge, auth_provider):
        auth_provider.add_user("u1")
        session = auth_provider.issue("u1")
        auth_provider.revoke(session["access_token"])
        result = await bridge.resolve({COOKIE: encode_session_cookie(session)})
        assert result.identity.subject_id == "u1"
        assert len(result.cookies) == 1
        assert not result.cookies[0].is_delete

    @pytest.mark.asyncio
    async def test_rejected_refresh_clears_cookie(self, bridge, auth_provider):
        auth_provider.add_user("u1")
        raw = auth_provider.cookie_for("u1", expires_at=int(time.time()) - 60)
        auth_provider.refresh_tokens.clear()
        result = await bridge.resolve({COOKIE: raw})
        assert result.identity is None
        assert [c.is_delete for c in result.cookies] == [True]

    @pytest.mark.asyncio
    async def test_provider_outage_raises_unavailable(self, bridge, auth_provider):
        auth_provider.add_user("u1")
        raw = auth_provider.cookie_for("u1")
        auth_provider.fail_with = 503
        with pytest.raises(AuthProviderUnavailable):
            await bridge.resolve({COOKIE: raw})

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            httpx.Response(200, text="<html>captive portal</html>"),
            httpx.Response(200, json=["not", "an", "object"]),
        ],
    )
    async def test_unexpected_user_body_raises_unavailable(self, bridge, auth_provider, body):
        auth_provider.add_user("u1")
        raw = auth_provider.cookie_for("u1")
        auth_provider.respond_with = lambda request: body
        with pytest.raises(AuthProviderUnavailable):
            await bridge.resolve({COOKIE: raw})

    @pytest.mark.asyncio
    async def test_invalid_expires_in_raises_unavailable(self, bridge, auth_provider):
        auth_provider.add_user("u1")
        raw = auth_provider.cookie_for("u1", expires_at=int(time.time()) - 60)
        auth_provider.respond_with = lambda request: httpx.Response(
            200, json={"access_token": "fresh", "expires_in": "soon"}
        )
        with pytest.raises(AuthProviderUnavailable):
            await bridge.resolve({COOKIE: raw})

    @pytest.mark.asyncio
    async def test_session_cookie_secure_in_production(self, auth_client, auth_provider):
        from conftest import make_settings

        bridge = SessionBridge(make_settings(environment="production"), auth_client)
        result = await bridge.resolve({COOKIE: "garbage"})
        assert result.cookies[0].secure
