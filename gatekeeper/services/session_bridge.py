"""Bridge between request cookies and the auth provider session.

The bridge reads the session cookie, refreshes the access token when needed
and reports every cookie it wants written as ``CookieDirective`` values. The
caller must apply them to the response it finally returns, redirects
included, otherwise a refreshed session is silently lost.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from gatekeeper.config import Settings
from gatekeeper.services.auth_provider import (
    AuthProviderClient,
    AuthProviderRejected,
    AuthProviderUnavailable,
    Identity,
)
from gatekeeper.services.cookies import CookieDirective

logger = logging.getLogger(__name__)

_BASE64_PREFIX = "base64-"
_EXPIRY_SKEW_SECONDS = 10
_SESSION_COOKIE_MAX_AGE = 400 * 24 * 60 * 60


class MalformedSessionCookie(ValueError):
    pass


@dataclass(frozen=True)
class StoredSession:
    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None

    def is_expired(self, now: float) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at - _EXPIRY_SKEW_SECONDS <= now


@dataclass
class BridgeResult:
    identity: Identity | None = None
    cookies: list[CookieDirective] = field(default_factory=list)


def decode_session_cookie(raw: str) -> StoredSession:
    text = raw
    if raw.startswith(_BASE64_PREFIX):
        encoded = raw[len(_BASE64_PREFIX):]
        padded = encoded + "=" * (-len(encoded) % 4)
        try:
            text = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
        except (binascii.Error, UnicodeError, ValueError) as exc:
            raise MalformedSessionCookie("session cookie is not valid base64") from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedSessionCookie("session cookie is not valid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedSessionCookie("session cookie is not an object")
    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise MalformedSessionCookie("session cookie has no access token")
    refresh_token = data.get("refresh_token")
    expires_at = data.get("expires_at")
    return StoredSession(
        access_token=access_token,
        refresh_token=refresh_token if isinstance(refresh_token, str) else None,
        expires_at=int(expires_at) if isinstance(expires_at, (int, float)) else None,
    )


def encode_session_cookie(session: Mapping[str, Any]) -> str:
    payload = json.dumps(
        {
            "access_token": session.get("access_token"),
            "refresh_token": session.get("refresh_token"),
            "expires_at": session.get("expires_at"),
            "token_type": session.get("token_type", "bearer"),
        },
        separators=(",", ":"),
    )
    encoded = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")
    return _BASE64_PREFIX + encoded.rstrip("=")


class SessionBridge:
    def __init__(
        self,
        settings: Settings,
        client: AuthProviderClient,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cookie_name = settings.auth_cookie_name
        self._secure = settings.is_production
        self._client = client
        self._clock = clock

    def _set_cookie(self, session: Mapping[str, Any]) -> CookieDirective:
        return CookieDirective(
            name=self._cookie_name,
            value=encode_session_cookie(session),
            max_age=_SESSION_COOKIE_MAX_AGE,
            http_only=False,
            secure=self._secure,
        )

    def _delete_cookie(self) -> CookieDirective:
        return CookieDirective.delete(self._cookie_name, secure=self._secure)

    async def _refresh(self, refresh_token: str, result: BridgeResult) -> str | None:
        try:
            refreshed = await self._client.refresh_session(refresh_token)
        except AuthProviderRejected:
            logger.info("Session refresh rejected; clearing session cookie")
            result.cookies.append(self._delete_cookie())
            return None
        expires_at = refreshed.get("expires_at")
        if expires_at is None and refreshed.get("expires_in") is not None:
            try:
                expires_in = int(refreshed["expires_in"])
            except (TypeError, ValueError) as exc:
                raise AuthProviderUnavailable(
                    "refresh response carried an invalid expires_in"
                ) from exc
            refreshed = {**refreshed, "expires_at": int(self._clock()) + expires_in}
        result.cookies.append(self._set_cookie(refreshed))
        return str(refreshed["access_token"])

    async def resolve(self, cookies: Mapping[str, str]) -> BridgeResult:
        """Resolve the identity behind the request cookies.

        Raises ``AuthProviderUnavailable`` on transport failures; the caller
        decides how to degrade.
        """
        result = BridgeResult()
        raw = cookies.get(self._cookie_name)
        if not raw:
            return result
        try:
            stored = decode_session_cookie(raw)
        except MalformedSessionCookie as exc:
            logger.info("Discarding malformed session cookie: %s", exc)
            result.cookies.append(self._delete_cookie())
            return result

        access_token: str | None = stored.access_token
        refreshed = False
        if stored.is_expired(self._clock()):
            if not stored.refresh_token:
                result.cookies.append(self._delete_cookie())
                return result
            access_token = await self._refresh(stored.refresh_token, result)
            refreshed = True
            if access_token is None:
                return result

        try:
            result.identity = await self._client.get_user(access_token)
            return result
        except AuthProviderRejected:
            if refreshed or not stored.refresh_token:
                result.cookies.append(self._delete_cookie())
                return result

        access_token = await self._refresh(stored.refresh_token, result)
        if access_token is None:
            return result
        try:
            result.identity = await self._client.get_user(access_token)
        except AuthProviderRejected:
            result.cookies.append(self._delete_cookie())
        return result
