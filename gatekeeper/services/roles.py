"""Canonical role derivation from provider-supplied identity metadata.

Provider metadata is untrusted and loosely shaped: a role field may be a
string, a list, missing, or something else entirely. Everything is normalized
here into a ``RoleSet`` and the raw shape never leaves this module.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping
from typing import Any

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    user = "user"
    business_owner = "business_owner"
    moderator = "moderator"
    admin = "admin"
    super_admin = "super_admin"


_ALIASES = {
    "superadmin": Role.super_admin,
    "super-admin": Role.super_admin,
    "owner": Role.business_owner,
    "business-owner": Role.business_owner,
}

_ADMIN_TIER = frozenset({Role.moderator, Role.admin, Role.super_admin})
# Roles a user may claim through metadata they can edit themselves.
SELF_ASSIGNABLE = frozenset({Role.user, Role.business_owner})


class RoleSet(frozenset):
    """Immutable set of canonical ``Role`` tags."""

    @property
    def is_super_admin(self) -> bool:
        return Role.super_admin in self

    @property
    def is_admin(self) -> bool:
        """Admin-level access: moderator, admin or super admin."""
        return bool(self & _ADMIN_TIER)

    def names(self) -> list[str]:
        return sorted(role.value for role in self)


def parse_role(value: Any) -> Role | None:
    text = str(value).strip().lower()
    if not text:
        return None
    if text in _ALIASES:
        return _ALIASES[text]
    try:
        return Role(text)
    except ValueError:
        return None


def normalize_roles(raw: Any) -> RoleSet:
    """Coerce a scalar-or-list role field into a ``RoleSet``."""
    if raw is None:
        return RoleSet()
    if isinstance(raw, str):
        items: Iterable[Any] = [raw]
    elif isinstance(raw, (list, tuple, set, frozenset)):
        items = raw
    else:
        return RoleSet()
    roles = set()
    for item in items:
        if isinstance(item, (dict, list, tuple, set)):
            continue
        role = parse_role(item)
        if role is not None:
            roles.add(role)
    return RoleSet(roles)


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, tuple, set, frozenset)):
        return len(value) > 0
    return True


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def resolve_roles(identity: Any) -> RoleSet:
    """Derive the canonical roles of an identity; least privilege on any doubt.

    A ``roles`` or ``role`` key in app-level metadata is authoritative even
    when empty, so a revoked role cannot resurface from a lower-priority
    field. Otherwise the provider role is used. User-level metadata is only
    read when neither exists, and can only grant ``SELF_ASSIGNABLE`` roles.
    """
    if identity is None:
        return RoleSet()
    try:
        app_meta = _mapping(getattr(identity, "app_metadata", None))
        if "roles" in app_meta:
            return normalize_roles(app_meta["roles"])
        if "role" in app_meta:
            return normalize_roles(app_meta["role"])
        provider_role = getattr(identity, "role", None)
        if _is_present(provider_role):
            return normalize_roles(provider_role)
        user_meta = _mapping(getattr(identity, "user_metadata", None))
        for candidate in (user_meta.get("roles"), user_meta.get("role")):
            if _is_present(candidate):
                return RoleSet(normalize_roles(candidate) & SELF_ASSIGNABLE)
    except Exception:
        logger.warning("Could not read role metadata; granting no roles", exc_info=True)
    return RoleSet()
