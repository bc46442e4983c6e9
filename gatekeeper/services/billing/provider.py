import logging
from collections.abc import Mapping
from typing import Any

import stripe

from gatekeeper.config import Settings

logger = logging.getLogger(__name__)


def to_plain(obj: Any) -> dict[str, Any]:
    """Turn a Stripe object into plain nested dicts."""
    if type(obj) is dict:
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(obj, Mapping):
        return dict(obj)
    raise TypeError(f"Cannot convert {type(obj).__name__} to dict")


class BillingProvider:
    """Reads authoritative subscription state from Stripe."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.stripe_secret_key

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        if not self.is_configured():
            raise RuntimeError("Stripe is not configured")
        subscription = stripe.Subscription.retrieve(
            subscription_id, api_key=self._api_key
        )
        logger.info("Retrieved Stripe subscription %s", subscription_id)
        return to_plain(subscription)
