"""Idempotent writes of the per-business subscription record.

Concurrent or repeated deliveries are serialized by the database, not by
this process: the checkout path is an ``INSERT ... ON CONFLICT`` on
``business_id`` and the update paths are conditional ``UPDATE`` statements
keyed by the Stripe subscription id. ``last_event_at`` holds the creation
time of the newest provider event applied to a row; older events are
skipped.
"""

import enum
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from gatekeeper.models.subscription import PlanTier, Subscription

logger = logging.getLogger(__name__)

CANCELED = "canceled"


class WriteOutcome(str, enum.Enum):
    applied = "applied"
    missing = "missing"
    stale = "stale"


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Fields taken from an authoritative Stripe subscription."""

    plan: PlanTier
    status: str
    stripe_customer_id: str | None
    stripe_subscription_id: str
    current_period_end: datetime | None
    cancel_at_period_end: bool


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Upsert not supported for dialect {dialect}")


def _not_newer(event_created: int):
    return or_(
        Subscription.last_event_at.is_(None),
        Subscription.last_event_at <= event_created,
    )


class SubscriptionStore:
    @staticmethod
    def get_by_business(db: Session, business_id: str) -> Subscription | None:
        return db.scalars(
            select(Subscription).where(Subscription.business_id == business_id)
        ).first()

    @staticmethod
    def get_by_stripe_id(db: Session, subscription_id: str) -> Subscription | None:
        return db.scalars(
            select(Subscription).where(
                Subscription.stripe_subscription_id == subscription_id
            )
        ).first()

    @staticmethod
    def _missing_or_stale(db: Session, subscription_id: str) -> WriteOutcome:
        exists = db.scalar(
            select(Subscription.id).where(
                Subscription.stripe_subscription_id == subscription_id
            )
        )
        return WriteOutcome.stale if exists else WriteOutcome.missing

    @staticmethod
    def upsert_from_checkout(
        db: Session,
        business_id: str,
        snapshot: SubscriptionSnapshot,
        event_created: int,
    ) -> WriteOutcome:
        values = {
            **asdict(snapshot),
            "ends_at": None,
            "paid_until": None,
            "last_event_at": event_created,
        }
        insert = _insert_for(db)
        stmt = insert(Subscription).values(business_id=business_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.business_id],
            set_={key: stmt.excluded[key] for key in values},
            where=_not_newer(event_created),
        )
        result = db.execute(stmt)
        db.commit()
        if result.rowcount == 0:
            logger.info(
                "Skipped stale checkout for business %s",
                business_id,
                extra={"business_id": business_id},
            )
            return WriteOutcome.stale
        logger.info(
            "Upserted subscription for business %s (plan=%s, status=%s)",
            business_id,
            snapshot.plan.value,
            snapshot.status,
            extra={
                "business_id": business_id,
                "subscription_id": snapshot.stripe_subscription_id,
            },
        )
        return WriteOutcome.applied

    @staticmethod
    def apply_update(
        db: Session,
        subscription_id: str,
        *,
        plan: PlanTier,
        status: str,
        stripe_customer_id: str | None,
        current_period_end: datetime | None,
        cancel_at_period_end: bool,
        event_created: int,
    ) -> WriteOutcome:
        """Patch a live subscription. Canceled records are terminal."""
        stmt = (
            update(Subscription)
            .where(Subscription.stripe_subscription_id == subscription_id)
            .where(Subscription.status != CANCELED)
            .where(_not_newer(event_created))
            .values(
                plan=plan,
                status=status,
                stripe_customer_id=stripe_customer_id,
                current_period_end=current_period_end,
                cancel_at_period_end=cancel_at_period_end,
                last_event_at=event_created,
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        db.commit()
        if result.rowcount:
            return WriteOutcome.applied
        return SubscriptionStore._missing_or_stale(db, subscription_id)

    @staticmethod
    def mark_canceled(
        db: Session,
        subscription_id: str,
        *,
        ended_at: datetime | None,
        event_created: int,
    ) -> WriteOutcome:
        if ended_at is not None:
            ends_at = ended_at
        else:
            # Keep the first recorded end so re-delivery converges.
            ends_at = func.coalesce(
                Subscription.ends_at, datetime.now(timezone.utc)
            )
        stmt = (
            update(Subscription)
            .where(Subscription.stripe_subscription_id == subscription_id)
            .where(_not_newer(event_created))
            .values(
                status=CANCELED,
                ends_at=ends_at,
                paid_until=ends_at,
                cancel_at_period_end=False,
                last_event_at=event_created,
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        db.commit()
        if result.rowcount:
            return WriteOutcome.applied
        return SubscriptionStore._missing_or_stale(db, subscription_id)

    @staticmethod
    def set_manual(
        db: Session, business_id: str, *, plan: PlanTier, status: str
    ) -> Subscription:
        """Override plan and status for a business, creating the row if needed.

        Stripe fields and ``last_event_at`` are left alone, so later provider
        events still apply on top of the override.
        """
        insert = _insert_for(db)
        stmt = insert(Subscription).values(
            business_id=business_id, plan=plan, status=status
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.business_id],
            set_={"plan": stmt.excluded.plan, "status": stmt.excluded.status},
        )
        db.execute(stmt)
        db.commit()
        logger.info(
            "Subscription for business %s set to plan=%s, status=%s",
            business_id,
            plan.value,
            status,
            extra={"business_id": business_id},
        )
        return db.scalars(
            select(Subscription).where(Subscription.business_id == business_id)
        ).one()

    @staticmethod
    def list(
        db: Session, status: str | None, limit: int, offset: int
    ) -> tuple[list[Subscription], int]:
        query = select(Subscription)
        if status:
            query = query.where(Subscription.status == status)
        total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
        items = db.scalars(
            query.order_by(Subscription.created_at.desc(), Subscription.business_id)
            .limit(limit)
            .offset(offset)
        ).all()
        return list(items), total


subscription_store = SubscriptionStore()
