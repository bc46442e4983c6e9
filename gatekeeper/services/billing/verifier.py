"""Stripe webhook signature verification over the raw request body."""

import logging
from typing import Any

import stripe

from gatekeeper.config import Settings
from gatekeeper.services.billing.provider import to_plain

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"


class WebhookVerificationError(ValueError):
    pass


class WebhookVerifier:
    def __init__(self, settings: Settings, tolerance: int = 300) -> None:
        self._secret = settings.stripe_webhook_secret
        self._tolerance = tolerance

    def verify(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Return the verified event.

        ``payload`` must be the exact bytes received; parsing and
        re-serializing the JSON first changes the signed content.
        """
        if not signature:
            raise WebhookVerificationError(f"Missing {SIGNATURE_HEADER} header")
        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self._secret,
                tolerance=self._tolerance,
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Stripe signature invalid: %s", exc)
            raise WebhookVerificationError("Invalid signature") from exc
        except ValueError as exc:
            logger.warning("Stripe payload could not be parsed: %s", exc)
            raise WebhookVerificationError("Invalid payload") from exc
        data = to_plain(event)
        logger.info(
            "Stripe signature verified",
            extra={"event_id": data.get("id"), "event_type": data.get("type")},
        )
        return data
