"""Stripe webhook receiver.

Acknowledges processed and ignored events with 200, rejects unverifiable
payloads with 400 and answers 500 on failures a redelivery can fix.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from gatekeeper.api.deps import get_context
from gatekeeper.context import AppContext
from gatekeeper.metrics import WEBHOOK_EVENTS
from gatekeeper.services.billing import SIGNATURE_HEADER, WebhookVerificationError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/stripe", tags=["billing"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request, context: AppContext = Depends(get_context)
) -> dict:
    """Handle a Stripe webhook. No session auth; the signature is verified."""
    body = await request.body()
    try:
        event = context.webhook_verifier.verify(
            body, request.headers.get(SIGNATURE_HEADER)
        )
    except WebhookVerificationError as exc:
        WEBHOOK_EVENTS.labels("unknown", "rejected").inc()
        logger.warning(
            "Rejected Stripe webhook: %s",
            exc,
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_signature", "message": "Invalid signature"},
        )

    event_type = str(event.get("type") or "unknown")
    try:
        outcome = await run_in_threadpool(context.event_router.dispatch, event)
    except Exception:
        WEBHOOK_EVENTS.labels(event_type, "failed").inc()
        logger.exception(
            "Stripe webhook processing failed",
            extra={"event_id": event.get("id"), "event_type": event_type},
        )
        raise HTTPException(
            status_code=500,
            detail={
                "code": "webhook_processing_failed",
                "message": "Webhook processing failed",
            },
        )
    WEBHOOK_EVENTS.labels(event_type, outcome.value).inc()
    return {"received": True}
