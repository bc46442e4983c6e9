"""Dispatch of verified Stripe events onto the subscription store.

Handlers return an ``EventOutcome``; they only raise for failures a retry
can fix (database or Stripe errors). Business-logic gaps such as a checkout
without a business id are acknowledged and logged.
"""

import enum
import logging
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from gatekeeper.services.audit import AuditSink
from gatekeeper.services.billing.plans import PlanMapper
from gatekeeper.services.billing.provider import BillingProvider
from gatekeeper.services.billing.subscriptions import (
    SubscriptionSnapshot,
    WriteOutcome,
    subscription_store,
)

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class EventOutcome(str, enum.Enum):
    processed = "processed"
    ignored = "ignored"
    missing = "missing"
    stale = "stale"


_FROM_WRITE = {
    WriteOutcome.applied: EventOutcome.processed,
    WriteOutcome.missing: EventOutcome.missing,
    WriteOutcome.stale: EventOutcome.stale,
}


def unix_to_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def customer_id(customer: Any) -> str | None:
    if not customer:
        return None
    if isinstance(customer, str):
        return customer
    if isinstance(customer, Mapping):
        value = customer.get("id")
        return str(value) if value else None
    return None


def _first_item(subscription: Mapping[str, Any]) -> Mapping[str, Any]:
    items = subscription.get("items") or {}
    data = items.get("data") if isinstance(items, Mapping) else None
    if data:
        return data[0]
    return {}


def price_id(subscription: Mapping[str, Any]) -> str | None:
    price = _first_item(subscription).get("price") or {}
    if isinstance(price, str):
        return price
    value = price.get("id")
    return str(value) if value else None


def current_period_end(subscription: Mapping[str, Any]) -> datetime | None:
    # Newer API versions carry the period on the subscription item.
    value = subscription.get("current_period_end")
    if value is None:
        value = _first_item(subscription).get("current_period_end")
    return unix_to_datetime(value)


def business_id_from_session(session: Mapping[str, Any]) -> str | None:
    metadata = session.get("metadata") or {}
    candidate = str(metadata.get("business_id") or "").strip()
    if not candidate:
        candidate = str(session.get("client_reference_id") or "").strip()
    return candidate or None


class BillingEventRouter:
    def __init__(
        self,
        session_factory: sessionmaker,
        provider: BillingProvider,
        plans: PlanMapper,
        audit: AuditSink | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider = provider
        self._plans = plans
        self._audit = audit
        self._handlers: dict[str, Callable[[Session, Mapping[str, Any], int], EventOutcome]] = {
            CHECKOUT_COMPLETED: self._checkout_completed,
            SUBSCRIPTION_UPDATED: self._subscription_updated,
            SUBSCRIPTION_DELETED: self._subscription_deleted,
        }

    def dispatch(self, event: Mapping[str, Any]) -> EventOutcome:
        event_type = str(event.get("type") or "")
        event_id = event.get("id")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(
                "Ignoring Stripe event type %s",
                event_type,
                extra={"event_id": event_id, "event_type": event_type},
            )
            return EventOutcome.ignored
        data = event.get("data") or {}
        obj = data.get("object") or {}
        created = int(event.get("created") or time.time())
        db = self._session_factory()
        try:
            outcome = handler(db, obj, created)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        logger.info(
            "Handled Stripe event %s: %s",
            event_type,
            outcome.value,
            extra={"event_id": event_id, "event_type": event_type},
        )
        return outcome

    def _record(self, action: str, entity_id: str | None, metadata: dict) -> None:
        if self._audit is not None:
            self._audit.record(
                action,
                entity_type="subscription",
                entity_id=entity_id,
                metadata=metadata,
            )

    def _checkout_completed(
        self, db: Session, session: Mapping[str, Any], created: int
    ) -> EventOutcome:
        if session.get("mode") != "subscription":
            return EventOutcome.ignored
        business_id = business_id_from_session(session)
        if not business_id:
            logger.warning(
                "Checkout session %s has no business id; acknowledging",
                session.get("id"),
            )
            return EventOutcome.ignored
        subscription_id = session.get("subscription")
        if isinstance(subscription_id, Mapping):
            subscription_id = subscription_id.get("id")
        if not subscription_id:
            logger.warning(
                "Checkout session %s has no subscription; acknowledging",
                session.get("id"),
                extra={"business_id": business_id},
            )
            return EventOutcome.ignored

        subscription = self._provider.retrieve_subscription(str(subscription_id))
        snapshot = SubscriptionSnapshot(
            plan=self._plans.plan_for_price(price_id(subscription)),
            status=str(subscription.get("status") or "active"),
            stripe_customer_id=customer_id(subscription.get("customer")),
            stripe_subscription_id=str(subscription.get("id") or subscription_id),
            current_period_end=current_period_end(subscription),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        )
        write = subscription_store.upsert_from_checkout(db, business_id, snapshot, created)
        if write is WriteOutcome.applied:
            self._record(
                "subscription.checkout_completed",
                snapshot.stripe_subscription_id,
                {
                    "business_id": business_id,
                    "plan": snapshot.plan.value,
                    "status": snapshot.status,
                },
            )
        return _FROM_WRITE[write]

    def _subscription_updated(
        self, db: Session, subscription: Mapping[str, Any], created: int
    ) -> EventOutcome:
        subscription_id = str(subscription.get("id") or "")
        if not subscription_id:
            return EventOutcome.ignored
        plan = self._plans.plan_for_price(price_id(subscription))
        status = str(subscription.get("status") or "active")
        write = subscription_store.apply_update(
            db,
            subscription_id,
            plan=plan,
            status=status,
            stripe_customer_id=customer_id(subscription.get("customer")),
            current_period_end=current_period_end(subscription),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            event_created=created,
        )
        if write is WriteOutcome.missing:
            logger.warning(
                "Subscription %s updated before checkout was recorded",
                subscription_id,
                extra={"subscription_id": subscription_id},
            )
        elif write is WriteOutcome.applied:
            self._record(
                "subscription.updated",
                subscription_id,
                {"plan": plan.value, "status": status},
            )
        return _FROM_WRITE[write]

    def _subscription_deleted(
        self, db: Session, subscription: Mapping[str, Any], created: int
    ) -> EventOutcome:
        subscription_id = str(subscription.get("id") or "")
        if not subscription_id:
            return EventOutcome.ignored
        write = subscription_store.mark_canceled(
            db,
            subscription_id,
            ended_at=unix_to_datetime(subscription.get("ended_at")),
            event_created=created,
        )
        if write is WriteOutcome.missing:
            logger.warning(
                "Subscription %s deleted without a stored record",
                subscription_id,
                extra={"subscription_id": subscription_id},
            )
        elif write is WriteOutcome.applied:
            self._record("subscription.canceled", subscription_id, {})
        return _FROM_WRITE[write]
