"""Tests for plan mapping, the subscription store and the event router."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from conftest import PRICE_IDS
from gatekeeper.models.subscription import PlanTier, Subscription
from gatekeeper.services.billing import (
    BillingEventRouter,
    EventOutcome,
    PlanMapper,
    SubscriptionSnapshot,
    WriteOutcome,
    subscription_store,
)
from gatekeeper.services.billing.events import (
    business_id_from_session,
    current_period_end,
    customer_id,
    price_id,
)

T0 = 1_760_000_000


def _snapshot(plan=PlanTier.growth, status="active", subscription_id="sub_1"):
    return SubscriptionSnapshot(
        plan=plan,
        status=status,
        stripe_customer_id="cus_1",
        stripe_subscription_id=subscription_id,
        current_period_end=datetime(2026, 12, 1, tzinfo=timezone.utc),
        cancel_at_period_end=False,
    )


def _update(db, subscription_id="sub_1", *, status="active", created=T0 + 10, **kwargs):
    params = {
        "plan": PlanTier.pro,
        "status": status,
        "stripe_customer_id": "cus_1",
        "current_period_end": None,
        "cancel_at_period_end": True,
        "event_created": created,
    }
    params.update(kwargs)
    return subscription_store.apply_update(db, subscription_id, **params)


class TestPlanMapper:
    def test_known_prices(self):
        mapper = PlanMapper(PRICE_IDS)
        assert mapper.plan_for_price("price_pro") is PlanTier.pro
        assert mapper.plan_for_price("price_growth") is PlanTier.growth

    def test_unknown_or_missing_price_is_starter(self):
        mapper = PlanMapper(PRICE_IDS)
        assert mapper.plan_for_price("price_legacy") is PlanTier.starter
        assert mapper.plan_for_price(None) is PlanTier.starter

    def test_blank_price_ids_are_not_mapped(self):
        mapper = PlanMapper({"starter": "", "growth": "", "pro": "price_pro"})
        assert mapper.plan_for_price("") is PlanTier.starter

    def test_from_settings(self, settings):
        assert PlanMapper.from_settings(settings).plan_for_price("price_pro") is PlanTier.pro


class TestPayloadHelpers:
    def test_customer_id_shapes(self):
        assert customer_id("cus_1") == "cus_1"
        assert customer_id({"id": "cus_2"}) == "cus_2"
        assert customer_id(None) is None
        assert customer_id(42) is None

    def test_price_id_from_first_item(self):
        assert price_id({"items": {"data": [{"price": {"id": "p1"}}, {"price": {"id": "p2"}}]}}) == "p1"
        assert price_id({"items": {"data": [{"price": "p3"}]}}) == "p3"
        assert price_id({}) is None

    def test_period_end_falls_back_to_item(self):
        sub = {"items": {"data": [{"current_period_end": T0}]}}
        assert current_period_end(sub) == datetime.fromtimestamp(T0, tz=timezone.utc)
        assert current_period_end({"current_period_end": "junk"}) is None

    def test_business_id_fallback(self):
        assert business_id_from_session({"metadata": {"business_id": " b1 "}}) == "b1"
        assert business_id_from_session({"metadata": {}, "client_reference_id": "b2"}) == "b2"
        assert business_id_from_session({"metadata": None}) is None


class TestSubscriptionStore:
    def test_checkout_inserts_then_updates_same_row(self, db_session):
        assert subscription_store.upsert_from_checkout(db_session, "biz_1", _snapshot(), T0) is WriteOutcome.applied
        assert subscription_store.upsert_from_checkout(
            db_session, "biz_1", _snapshot(plan=PlanTier.pro, subscription_id="sub_2"), T0 + 5
        ) is WriteOutcome.applied
        rows = db_session.scalars(select(Subscription)).all()
        assert len(rows) == 1
        assert rows[0].plan is PlanTier.pro
        assert rows[0].stripe_subscription_id == "sub_2"

    def test_older_checkout_is_stale(self, db_session):
        subscription_store.upsert_from_checkout(db_session, "biz_1", _snapshot(plan=PlanTier.pro), T0 + 100)
        outcome = subscription_store.upsert_from_checkout(db_session, "biz_1", _snapshot(), T0)
        assert outcome is WriteOutcome.stale
        db_session.expire_all()
        assert subscription_store.get_by_business(db_session, "biz_1").plan is PlanTier.pro

    def test_update_patches_fields(self, db_session):
        subscription_store.upsert_from_checkout(db_session, "biz_1", _snapshot(), T0)
        assert _update(db_session, status="past_due") is WriteOutcome.applied
        db_session.expire_all()
        row = subscription_store.get_by_stripe_id(db_session, "sub_1")
        assert (row.plan, row.status, row.cancel_at_period_end) == (PlanTier.pro, "past_due", True)
        assert row.last_event_at == T0 + 10

    def test_update_without_record_is_missing(self, db_session):
        assert _update(db_session, "sub_unknown") is WriteOutcome.missing

    def test_out_of_order_update_is_stale(self, db_session):
        subscription_store.upsert_from_checkout(db_session, "biz_1", _snapshot(), T0 + 50)
        assert _update(db_session, created=T0 + 10) is WriteOutcome.stale

    def test_cancel_uses_provider_end_time(self, db_session):
        subscription_store.upsert_from_checkout(db_session, "biz_1", _snapshot(), T0)
        ended = datetime(2026, 5, 1, tzinfo=timezone.utc)
        outcome = subscription_store.mark_canceled(db_session, "sub_1", ended_at=ended, event_created=T0 + 20)
        assert outcome is WriteOutcome.applied
        db_session.expire_all()
        row = subscription_store.get_by_business(db_session, "biz_1")
        assert row.status == "canceled"
        assert row.cancel_at_period_end is False
        assert row.ends_at.replace(tzinfo=timezone.utc) == ended

    def test_cancel_fallback_end_time_is_kept_on_redelivery(self, db_session):
        subscription_store.upsert_from_checkout(db_session, "biz_1", _snapshot(), T0)
        subscription_store.mark_canceled(db_session, "sub_1", ended_at=None, event_created=T0 + 20)
        db_session.expire_all()
        first_end = subscription_store.get_by_business(db_session, "biz_1").ends_at
        assert first_end is not None
        subscription_store.mark_canceled(db_session, "sub_1", ended_at=None, event_created=T0 + 20)
        db_session.expire_all()
        assert subscription_store.get_by_business(db_session, "biz_1").ends_at == first_end

    def test_canceled_is_terminal_for_updates(self, db_session):
        subscription_store.upsert_from_checkout(db_session, "biz_1", _snapshot(), T0)
        subscription_store.mark_canceled(db_session, "sub_1", ended_at=None, event_created=T0 + 20)
        assert _update(db_session, created=T0 + 30) is WriteOutcome.stale
        db_session.expire_all()
        assert subscription_store.get_by_business(db_session, "biz_1").status == "canceled"


class TestEventRouter:
    @pytest.fixture()
    def router(self, session_factory, billing_provider):
        return BillingEventRouter(session_factory, billing_provider, PlanMapper(PRICE_IDS))

    @staticmethod
    def _checkout(**overrides):
        session = {
            "id": "cs_1",
            "mode": "subscription",
            "metadata": {"business_id": "biz_1"},
            "subscription": "sub_1",
        }
        session.update(overrides)
        return {
            "id": "evt_checkout",
            "type": "checkout.session.completed",
            "created": T0,
            "data": {"object": session},
        }

    def test_unknown_event_type_is_ignored(self, router):
        assert router.dispatch({"id": "evt", "type": "invoice.paid"}) is EventOutcome.ignored

    def test_payment_mode_checkout_is_ignored(self, router, billing_provider):
        assert router.dispatch(self._checkout(mode="payment")) is EventOutcome.ignored
        assert billing_provider.calls == []

    def test_checkout_without_business_is_ignored(self, router, billing_provider):
        event = self._checkout(metadata={}, client_reference_id=None)
        assert router.dispatch(event) is EventOutcome.ignored
        assert billing_provider.calls == []

    def test_checkout_uses_authoritative_subscription(self, router, billing_provider, db_session):
        billing_provider.add_subscription("sub_1", "price_growth", status="trialing")
        assert router.dispatch(self._checkout()) is EventOutcome.processed
        row = subscription_store.get_by_business(db_session, "biz_1")
        assert (row.plan, row.status, row.stripe_customer_id) == (PlanTier.growth, "trialing", "cus_123")

    def test_client_reference_fallback(self, router, billing_provider, db_session):
        billing_provider.add_subscription("sub_1", "price_pro")
        router.dispatch(self._checkout(metadata=None, client_reference_id="biz_9"))
        assert subscription_store.get_by_business(db_session, "biz_9").plan is PlanTier.pro

    def test_update_before_checkout_is_missing(self, router):
        event = {
            "id": "evt_u",
            "type": "customer.subscription.updated",
            "created": T0,
            "data": {"object": {"id": "sub_x", "status": "active"}},
        }
        assert router.dispatch(event) is EventOutcome.missing

    def test_provider_errors_propagate(self, router, billing_provider):
        billing_provider.error = RuntimeError("stripe down")
        with pytest.raises(RuntimeError):
            router.dispatch(self._checkout())
