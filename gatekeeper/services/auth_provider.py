"""Supabase GoTrue REST client used for session bridging and god-mode admin."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from gatekeeper.config import Settings

logger = logging.getLogger(__name__)


class AuthProviderUnavailable(RuntimeError):
    """The identity provider could not be reached or answered with a 5xx."""


class AuthProviderRejected(RuntimeError):
    """The identity provider refused the presented credential."""


@dataclass(frozen=True)
class Identity:
    subject_id: str
    email: str | None = None
    role: str | None = None
    app_metadata: dict[str, Any] = field(default_factory=dict)
    user_metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Identity":
        app_metadata = payload.get("app_metadata")
        user_metadata = payload.get("user_metadata")
        return cls(
            subject_id=str(payload.get("id", "")),
            email=payload.get("email"),
            role=payload.get("role") if isinstance(payload.get("role"), str) else None,
            app_metadata=app_metadata if isinstance(app_metadata, dict) else {},
            user_metadata=user_metadata if isinstance(user_metadata, dict) else {},
        )


class AuthProviderClient:
    """Thin wrapper around the GoTrue REST API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = settings.auth_url.rstrip("/")
        self._anon_key = settings.auth_anon_key
        self._service_role_key = settings.auth_service_role_key
        self._client = http_client or httpx.AsyncClient(
            timeout=settings.auth_timeout_seconds
        )

    def _headers(self, bearer: str) -> dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {bearer}",
            "Content-Type": "application/json",
        }

    def _admin_headers(self) -> dict[str, str]:
        return {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
            "Content-Type": "application/json",
        }

    def is_configured_for_admin(self) -> bool:
        return bool(self._service_role_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, f"{self._base_url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise AuthProviderUnavailable(
                f"Auth provider request failed: {exc.__class__.__name__}"
            ) from exc
        if resp.status_code >= 500:
            raise AuthProviderUnavailable(
                f"Auth provider returned {resp.status_code}"
            )
        return resp

    @staticmethod
    def _json_object(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise AuthProviderUnavailable("Auth provider returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise AuthProviderUnavailable(
                f"Auth provider returned JSON {type(data).__name__}, expected an object"
            )
        return data

    # ── Sessions ─────────────────────────────────────────

    async def get_user(self, access_token: str) -> Identity:
        resp = await self._send(
            "GET", "/auth/v1/user", headers=self._headers(access_token)
        )
        if resp.status_code != 200:
            raise AuthProviderRejected(f"get_user returned {resp.status_code}")
        return Identity.from_payload(self._json_object(resp))

    async def refresh_session(self, refresh_token: str) -> dict[str, Any]:
        resp = await self._send(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
            headers=self._headers(self._anon_key),
        )
        if resp.status_code != 200:
            raise AuthProviderRejected(f"refresh returned {resp.status_code}")
        data = self._json_object(resp)
        if not data.get("access_token"):
            raise AuthProviderRejected("refresh response carried no access token")
        return data

    # ── Admin ────────────────────────────────────────────

    async def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        if not self.is_configured_for_admin():
            raise RuntimeError("Auth provider admin key is not configured")
        resp = await self._send(
            "GET", f"/auth/v1/admin/users/{user_id}", headers=self._admin_headers()
        )
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise AuthProviderRejected(f"get_user_by_id returned {resp.status_code}")
        return self._json_object(resp)

    async def update_app_metadata(
        self, user_id: str, app_metadata: dict[str, Any]
    ) -> dict[str, Any]:
        if not self.is_configured_for_admin():
            raise RuntimeError("Auth provider admin key is not configured")
        resp = await self._send(
            "PUT",
            f"/auth/v1/admin/users/{user_id}",
            json={"app_metadata": app_metadata},
            headers=self._admin_headers(),
        )
        if resp.status_code != 200:
            logger.error("Auth provider update_app_metadata failed: %s", resp.text)
            raise AuthProviderRejected(
                f"update_app_metadata returned {resp.status_code}"
            )
        logger.info("Updated app metadata for user %s", user_id)
        return self._json_object(resp)
