"""Edge authorization middleware.

Runs the gatekeeper for every gated request and turns its decision into
either the downstream response or a redirect. Cookie directives from the
decision are written onto whichever response is returned.
"""

from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from gatekeeper.metrics import GATE_DECISIONS
from gatekeeper.services.cookies import apply_cookie_directives
from gatekeeper.services.gatekeeper import GateRequest, should_gate

logger = logging.getLogger(__name__)


def gate_request_from(request: Request) -> GateRequest:
    return GateRequest(
        method=request.method,
        path=request.url.path,
        query_string=request.url.query,
        accept_language=request.headers.get("accept-language"),
        cookies=dict(request.cookies),
        query_params=dict(request.query_params),
    )


class GatekeeperMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: object) -> Response:
        if not should_gate(request.method, request.url.path):
            return await call_next(request)  # type: ignore[call-arg]

        context = request.app.state.context
        decision = await context.gatekeeper.evaluate(gate_request_from(request))
        GATE_DECISIONS.labels(decision.kind.value).inc()

        request.state.identity = decision.identity
        request.state.roles = decision.roles
        if decision.identity is not None:
            request.state.actor_id = decision.identity.subject_id

        response: Response
        if decision.is_redirect:
            logger.info(
                "Gatekeeper redirect to %s",
                decision.location,
                extra={
                    "request_id": getattr(request.state, "request_id", None),
                    "path": request.url.path,
                    "decision": decision.kind.value,
                },
            )
            response = RedirectResponse(url=decision.location or "/", status_code=307)
        else:
            response = await call_next(request)  # type: ignore[call-arg]
        return apply_cookie_directives(response, decision.cookies)
