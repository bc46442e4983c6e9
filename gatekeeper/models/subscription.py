import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from gatekeeper.db import Base


class PlanTier(str, enum.Enum):
    starter = "starter"
    growth = "growth"
    pro = "pro"


class Subscription(Base):
    """One subscription record per business.

    Rows are never deleted; cancellation sets ``status`` to ``canceled`` and
    stamps ``ends_at``. No ``updated_at`` column: re-applying an identical
    provider event leaves the row unchanged.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("business_id", name="uq_subscriptions_business_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    business_id: Mapped[str] = mapped_column(String(64), nullable=False)
    plan: Mapped[PlanTier] = mapped_column(
        Enum(PlanTier, name="plantier"), default=PlanTier.starter, nullable=False
    )
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255))
    stripe_subscription_id: Mapped[str | None] = mapped_column(
        String(255), index=True
    )
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_event_at: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
