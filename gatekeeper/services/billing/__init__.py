from gatekeeper.services.billing.events import (
    BillingEventRouter,
    EventOutcome,
)
from gatekeeper.services.billing.plans import PlanMapper
from gatekeeper.services.billing.provider import BillingProvider
from gatekeeper.services.billing.subscriptions import (
    SubscriptionSnapshot,
    SubscriptionStore,
    WriteOutcome,
    subscription_store,
)
from gatekeeper.services.billing.verifier import (
    SIGNATURE_HEADER,
    WebhookVerificationError,
    WebhookVerifier,
)

__all__ = [
    "BillingEventRouter",
    "BillingProvider",
    "EventOutcome",
    "PlanMapper",
    "SIGNATURE_HEADER",
    "SubscriptionSnapshot",
    "SubscriptionStore",
    "WebhookVerificationError",
    "WebhookVerifier",
    "WriteOutcome",
    "subscription_store",
]
