"""Maintenance-mode gate with a shared-secret bypass."""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session, sessionmaker

from gatekeeper.config import Settings
from gatekeeper.services.cookies import CookieDirective
from gatekeeper.services.platform_settings import platform_settings
from gatekeeper.services.roles import RoleSet
from gatekeeper.services.routes import (
    MAINTENANCE_PATH,
    PUBLIC_AUTH_PAGES,
    path_matches_any,
)

logger = logging.getLogger(__name__)

BYPASS_COOKIE_NAME = "maint_bypass"
BYPASS_QUERY_PARAM = "maint_bypass"

# Reachable while maintenance is on; the login pages let a super admin sign in.
MAINTENANCE_OPEN_PATHS = (MAINTENANCE_PATH, *PUBLIC_AUTH_PAGES)


@dataclass
class MaintenanceResult:
    blocked: bool
    cookies: list[CookieDirective] = field(default_factory=list)


class MaintenanceGate:
    def __init__(self, settings: Settings) -> None:
        self._secret = settings.maintenance_bypass_secret
        self._secure = settings.is_production

    def token_matches(self, presented: str | None) -> bool:
        if not presented or not self._secret:
            return False
        return hmac.compare_digest(
            presented.encode("utf-8"), self._secret.encode("utf-8")
        )

    def _bypass_cookie(self) -> CookieDirective:
        return CookieDirective(
            name=BYPASS_COOKIE_NAME,
            value=self._secret,
            http_only=True,
            secure=self._secure,
            same_site="lax",
        )

    def check(
        self,
        *,
        active: bool,
        roles: RoleSet,
        path: str,
        bypass_cookie: str | None,
        bypass_query: str | None,
    ) -> MaintenanceResult:
        """Decide whether maintenance blocks this request.

        ``path`` is the locale-stripped path. A matching bypass query always
        yields the bypass cookie, whether or not maintenance is active.
        """
        result = MaintenanceResult(blocked=False)
        query_ok = self.token_matches(bypass_query)
        if query_ok:
            result.cookies.append(self._bypass_cookie())
        if not active:
            return result
        if roles.is_super_admin:
            return result
        if path_matches_any(path, MAINTENANCE_OPEN_PATHS):
            return result
        if query_ok or self.token_matches(bypass_cookie):
            return result
        result.blocked = True
        return result


def read_maintenance_flag(session_factory: sessionmaker) -> bool:
    """Read-through of the global flag; runs in a worker thread."""
    db: Session = session_factory()
    try:
        return platform_settings.is_maintenance_active(db)
    finally:
        db.close()
