"""Ordered decision state machine for gated requests.

The rules are evaluated top to bottom and the first match wins:

1. no locale in the path         -> REDIRECT_LOCALE
2. maintenance blocks            -> REDIRECT_MAINTENANCE
3. public route                  -> ALLOW
4. no identity                   -> REDIRECT_LOGIN (``redirectedFrom``)
5. super-admin route, not super  -> REDIRECT_FORBIDDEN ``super``
6. admin route, below admin tier -> REDIRECT_FORBIDDEN ``admin``
7. otherwise                     -> ALLOW

Every decision carries the cookie directives collected along the way.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from urllib.parse import urlencode

from gatekeeper.services.auth_provider import Identity
from gatekeeper.services.cookies import CookieDirective
from gatekeeper.services.locale import guess_locale, with_locale
from gatekeeper.services.roles import RoleSet
from gatekeeper.services.routes import LOGIN_PATH, MAINTENANCE_PATH, RouteClass


class DecisionKind(str, enum.Enum):
    allow = "allow"
    redirect_locale = "redirect_locale"
    redirect_login = "redirect_login"
    redirect_maintenance = "redirect_maintenance"
    redirect_forbidden = "redirect_forbidden"


@dataclass
class Decision:
    kind: DecisionKind
    location: str | None = None
    scope: str | None = None
    cookies: list[CookieDirective] = field(default_factory=list)
    identity: Identity | None = None
    roles: RoleSet = field(default_factory=RoleSet)

    @property
    def is_redirect(self) -> bool:
        return self.kind is not DecisionKind.allow


@dataclass
class GateState:
    path: str
    query_string: str = ""
    accept_language: str | None = None
    locale: str | None = None
    route: RouteClass = RouteClass.public
    maintenance_blocked: bool = False
    identity: Identity | None = None
    roles: RoleSet = field(default_factory=RoleSet)
    cookies: list[CookieDirective] = field(default_factory=list)


def _with_query(path: str, query_string: str) -> str:
    return f"{path}?{query_string}" if query_string else path


def build_decision(state: GateState) -> Decision:
    cookies = list(state.cookies)

    def _redirect(kind: DecisionKind, location: str, scope: str | None = None) -> Decision:
        return Decision(
            kind=kind,
            location=location,
            scope=scope,
            cookies=cookies,
            identity=state.identity,
            roles=state.roles,
        )

    if state.locale is None:
        target = with_locale(state.path, guess_locale(state.accept_language))
        return _redirect(
            DecisionKind.redirect_locale, _with_query(target, state.query_string)
        )
    lang = state.locale

    if state.maintenance_blocked:
        return _redirect(
            DecisionKind.redirect_maintenance, f"/{lang}{MAINTENANCE_PATH}"
        )

    if state.route is RouteClass.public:
        return Decision(
            DecisionKind.allow, cookies=cookies, identity=state.identity, roles=state.roles
        )

    if state.identity is None:
        origin = _with_query(state.path, state.query_string)
        query = urlencode({"redirectedFrom": origin})
        return _redirect(DecisionKind.redirect_login, f"/{lang}{LOGIN_PATH}?{query}")

    if state.route is RouteClass.super_admin and not state.roles.is_super_admin:
        return _redirect(
            DecisionKind.redirect_forbidden, f"/{lang}?forbidden=super", "super"
        )

    if state.route is RouteClass.admin and not state.roles.is_admin:
        return _redirect(
            DecisionKind.redirect_forbidden, f"/{lang}?forbidden=admin", "admin"
        )

    return Decision(
        DecisionKind.allow, cookies=cookies, identity=state.identity, roles=state.roles
    )
