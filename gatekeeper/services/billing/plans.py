import logging

from gatekeeper.config import Settings
from gatekeeper.models.subscription import PlanTier

logger = logging.getLogger(__name__)

DEFAULT_PLAN = PlanTier.starter


class PlanMapper:
    """Maps Stripe price ids onto internal plan tiers."""

    def __init__(self, price_ids: dict[str, str]) -> None:
        self._by_price: dict[str, PlanTier] = {}
        for tier_name, price_id in price_ids.items():
            if price_id:
                self._by_price[price_id] = PlanTier(tier_name)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlanMapper":
        return cls(settings.stripe_price_ids)

    def plan_for_price(self, price_id: str | None) -> PlanTier:
        if not price_id:
            return DEFAULT_PLAN
        plan = self._by_price.get(price_id)
        if plan is None:
            logger.warning("Unknown Stripe price %s; defaulting to %s", price_id, DEFAULT_PLAN.value)
            return DEFAULT_PLAN
        return plan
