"""Static route classification on locale-stripped paths."""
from __future__ import annotations

import enum


class RouteClass(str, enum.Enum):
    public = "public"
    protected = "protected"
    admin = "admin"
    super_admin = "super_admin"


ALWAYS_PUBLIC_PREFIXES = ("/biz", "/maintenance")
PUBLIC_AUTH_PAGES = (
    "/business/auth",
    "/business/forgot-password",
    "/business/reset-password",
)
PROTECTED_PREFIXES = ("/dashboard", "/business", "/account")
ADMIN_PREFIX = "/admin"
SUPER_ADMIN_PREFIX = "/godmode"

LOGIN_PATH = "/business/auth"
MAINTENANCE_PATH = "/maintenance"

_RULES: tuple[tuple[str, RouteClass], ...] = (
    *((p, RouteClass.public) for p in ALWAYS_PUBLIC_PREFIXES),
    *((p, RouteClass.public) for p in PUBLIC_AUTH_PAGES),
    *((p, RouteClass.protected) for p in PROTECTED_PREFIXES),
    (ADMIN_PREFIX, RouteClass.admin),
    (SUPER_ADMIN_PREFIX, RouteClass.super_admin),
)


def path_matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def path_matches_any(path: str, prefixes: tuple[str, ...]) -> bool:
    return any(path_matches(path, prefix) for prefix in prefixes)


def classify_route(path: str) -> RouteClass:
    """Longest matching prefix decides; unmatched paths are public."""
    best: tuple[int, RouteClass] | None = None
    for prefix, route_class in _RULES:
        if path_matches(path, prefix) and (best is None or len(prefix) > best[0]):
            best = (len(prefix), route_class)
    return best[1] if best else RouteClass.public
