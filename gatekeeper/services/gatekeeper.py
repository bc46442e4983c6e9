"""Per-request orchestration: locale, session, roles, maintenance, decision."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from gatekeeper.config import Settings
from gatekeeper.services.auth_provider import AuthProviderUnavailable
from gatekeeper.services.decision import Decision, GateState, build_decision
from gatekeeper.services.locale import locale_from_path, strip_locale
from gatekeeper.services.maintenance import (
    BYPASS_COOKIE_NAME,
    BYPASS_QUERY_PARAM,
    MaintenanceGate,
    read_maintenance_flag,
)
from gatekeeper.services.roles import resolve_roles
from gatekeeper.services.routes import classify_route, path_matches_any
from gatekeeper.services.session_bridge import BridgeResult, SessionBridge

logger = logging.getLogger(__name__)

AUTH_CALLBACK_PATHS = ("/auth/callback", "/auth/confirm", "/auth/oauth/callback")
_PASS_THROUGH_PREFIXES = (
    "/_next",
    "/api",
    "/assets",
    "/images",
    "/static",
    "/health",
)
_PASS_THROUGH_FILES = {
    "/favicon.ico",
    "/manifest.webmanifest",
    "/robots.txt",
    "/sitemap.xml",
    "/metrics",
}
_UNGATED_METHODS = {"OPTIONS", "HEAD"}
_FILE_EXTENSION = re.compile(r"\.\w+$")


def should_gate(method: str, path: str) -> bool:
    """Assets, API routes, preflights and auth callbacks skip the gatekeeper."""
    if method.upper() in _UNGATED_METHODS:
        return False
    if path_matches_any(path, AUTH_CALLBACK_PATHS):
        return False
    if path in _PASS_THROUGH_FILES or path_matches_any(path, _PASS_THROUGH_PREFIXES):
        return False
    return _FILE_EXTENSION.search(path) is None


@dataclass
class GateRequest:
    method: str
    path: str
    query_string: str = ""
    accept_language: str | None = None
    cookies: Mapping[str, str] = field(default_factory=dict)
    query_params: Mapping[str, str] = field(default_factory=dict)


class Gatekeeper:
    def __init__(
        self,
        settings: Settings,
        session_bridge: SessionBridge,
        session_factory: sessionmaker,
        maintenance_gate: MaintenanceGate | None = None,
    ) -> None:
        self._bridge = session_bridge
        self._session_factory = session_factory
        self._gate = maintenance_gate or MaintenanceGate(settings)
        self._auth_timeout = settings.auth_timeout_seconds
        self._settings_timeout = settings.settings_timeout_seconds

    async def _resolve_session(self, cookies: Mapping[str, str]) -> BridgeResult:
        try:
            return await asyncio.wait_for(
                self._bridge.resolve(cookies), timeout=self._auth_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Auth provider timed out; treating request as anonymous")
        except AuthProviderUnavailable as exc:
            logger.warning("Auth provider unavailable (%s); treating as anonymous", exc)
        except Exception:
            logger.exception("Session resolution failed; treating request as anonymous")
        return BridgeResult()

    async def _maintenance_active(self) -> bool:
        # A timed-out read is abandoned; its thread finishes on its own.
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(read_maintenance_flag, self._session_factory),
                timeout=self._settings_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Maintenance flag read timed out; assuming off")
        except SQLAlchemyError:
            logger.warning("Maintenance flag read failed; assuming off", exc_info=True)
        except Exception:
            logger.exception("Unexpected error reading maintenance flag; assuming off")
        return False

    async def evaluate(self, request: GateRequest) -> Decision:
        locale = locale_from_path(request.path)
        if locale is None:
            return build_decision(
                GateState(
                    path=request.path,
                    query_string=request.query_string,
                    accept_language=request.accept_language,
                )
            )

        bridged, maintenance_active = await asyncio.gather(
            self._resolve_session(request.cookies),
            self._maintenance_active(),
        )
        roles = resolve_roles(bridged.identity)
        path = strip_locale(request.path)
        maintenance = self._gate.check(
            active=maintenance_active,
            roles=roles,
            path=path,
            bypass_cookie=request.cookies.get(BYPASS_COOKIE_NAME),
            bypass_query=request.query_params.get(BYPASS_QUERY_PARAM),
        )
        return build_decision(
            GateState(
                path=request.path,
                query_string=request.query_string,
                accept_language=request.accept_language,
                locale=locale,
                route=classify_route(path),
                maintenance_blocked=maintenance.blocked,
                identity=bridged.identity,
                roles=roles,
                cookies=[*bridged.cookies, *maintenance.cookies],
            )
        )
