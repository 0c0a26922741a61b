"""
careermentor/features/plans/catalog.py

Plan catalog: price id -> (tier, credit allotment).

Built once at startup from settings and handed to the billing service
explicitly. Unknown price ids are a hard error.
"""

from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from careermentor.core.errors import UnknownPlanError
from careermentor.models.entitlement import Role
from careermentor.models.plan import PlanEntry

PRICE_ID_PREFIX = "price_"


class PlanCatalog:
    """Immutable lookup table of purchasable plans."""

    def __init__(self, entries: Iterable[PlanEntry], free_credits: int):
        by_price = {}
        for entry in entries:
            if entry.tier == Role.FREE:
                raise ValueError("free tier is not purchasable")
            by_price[entry.price_id] = entry
        self._by_price: Mapping[str, PlanEntry] = MappingProxyType(by_price)
        self._free_credits = free_credits

    @property
    def free_credits(self) -> int:
        return self._free_credits

    @property
    def entries(self) -> Mapping[str, PlanEntry]:
        return self._by_price

    def resolve_plan(self, price_id: Optional[str]) -> PlanEntry:
        entry = self._by_price.get(price_id) if price_id else None
        if entry is None:
            raise UnknownPlanError(f"Unknown price id: {price_id}")
        return entry

    def credits_for_tier(self, tier: Role) -> int:
        if tier == Role.FREE:
            return self._free_credits
        for entry in self._by_price.values():
            if entry.tier == tier:
                return entry.credit_allotment
        raise UnknownPlanError(f"No plan configured for tier: {tier.value}")

    @staticmethod
    def is_valid_price_id(value: Optional[str]) -> bool:
        """Format check only; catalog membership is resolved at webhook time."""
        return isinstance(value, str) and value.startswith(PRICE_ID_PREFIX) and len(value) > len(PRICE_ID_PREFIX)


def load_plan_catalog(settings_obj) -> PlanCatalog:
    """Build the catalog from settings (STRIPE_PRICE_* and *_ANALYSIS_CREDITS)."""
    return PlanCatalog(
        [
            PlanEntry(
                price_id=settings_obj.STRIPE_PRICE_PRO,
                tier=Role.PRO,
                credit_allotment=settings_obj.PRO_ANALYSIS_CREDITS,
            ),
            PlanEntry(
                price_id=settings_obj.STRIPE_PRICE_PREMIUM,
                tier=Role.PREMIUM,
                credit_allotment=settings_obj.PREMIUM_ANALYSIS_CREDITS,
            ),
        ],
        free_credits=settings_obj.FREE_ANALYSIS_CREDITS,
    )
