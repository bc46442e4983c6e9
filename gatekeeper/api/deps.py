from __future__ import annotations

from fastapi import Depends, Request, Response

from gatekeeper.context import AppContext
from gatekeeper.errors import SessionHTTPException
from gatekeeper.services.auth_provider import Identity
from gatekeeper.services.cookies import apply_cookie_directives
from gatekeeper.services.roles import resolve_roles


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_db(context: AppContext = Depends(get_context)):
    db = context.session_factory()
    try:
        yield db
    finally:
        db.close()


async def require_super_admin(
    request: Request,
    response: Response,
    context: AppContext = Depends(get_context),
) -> Identity:
    """Resolve the caller from the session cookie and insist on super admin.

    API routes are not gated by the middleware, so the session is bridged
    here. Cookie changes from the bridge reach the client on success and on
    401/403 alike.
    """
    bridged = await context.session_bridge.resolve(request.cookies)
    if bridged.identity is None:
        raise SessionHTTPException(
            status_code=401,
            detail={"code": "not_authenticated", "message": "Not authenticated"},
            cookies=bridged.cookies,
        )
    if not resolve_roles(bridged.identity).is_super_admin:
        raise SessionHTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Super admin required"},
            cookies=bridged.cookies,
        )
    apply_cookie_directives(response, bridged.cookies)
    request.state.actor_id = bridged.identity.subject_id
    return bridged.identity
