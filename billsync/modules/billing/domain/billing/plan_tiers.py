"""Plan code -> tier lookup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from billsync.shared.core.pricing import PricingTier, normalize_tier

from . import paystack_shared as shared

if TYPE_CHECKING:
    from billsync.models.plan import PlanTierMapping
    from .subscription_store import BillingStore


@dataclass(frozen=True, slots=True)
class PlanTierEntry:
    tier: PricingTier
    interval: Optional[str] = None


class PlanTierResolver:
    """
    Maps opaque Paystack plan codes to internal tiers.
    Unknown codes resolve to the baseline tier with a warning, never an error.
    """

    def __init__(
        self,
        mapping: Mapping[str, PlanTierEntry | PricingTier | str],
        baseline: PricingTier | str = PricingTier.FREE,
    ) -> None:
        self.baseline = normalize_tier(baseline)
        self._entries: dict[str, PlanTierEntry] = {}
        for plan_code, value in mapping.items():
            self._entries[plan_code.strip()] = self._to_entry(plan_code, value)

    def _to_entry(
        self, plan_code: str, value: PlanTierEntry | PricingTier | str
    ) -> PlanTierEntry:
        if isinstance(value, PlanTierEntry):
            return value
        tier = normalize_tier(value, default=self.baseline)
        if not isinstance(value, PricingTier) and tier.value != str(value).strip().lower():
            shared.logger.warning(
                "plan_tier_mapping_invalid_tier",
                plan_code=plan_code,
                tier=str(value),
                fallback=self.baseline.value,
            )
        return PlanTierEntry(tier=tier)

    def resolve(self, plan_code: Optional[str]) -> PricingTier:
        entry = self._entries.get((plan_code or "").strip())
        if entry is None:
            shared.logger.warning(
                "plan_code_unmapped_using_baseline_tier",
                plan_code=plan_code,
                tier=self.baseline.value,
            )
            return self.baseline
        return entry.tier

    def interval_for(self, plan_code: Optional[str]) -> Optional[str]:
        entry = self._entries.get((plan_code or "").strip())
        return entry.interval if entry else None

    def __contains__(self, plan_code: object) -> bool:
        return isinstance(plan_code, str) and plan_code.strip() in self._entries

    @classmethod
    def from_sources(
        cls,
        static_mapping: Mapping[str, str],
        rows: Iterable["PlanTierMapping"] = (),
        baseline: PricingTier | str = PricingTier.FREE,
    ) -> "PlanTierResolver":
        """Static settings first, database rows override."""
        resolver = cls(static_mapping, baseline=baseline)
        for row in rows:
            resolver._entries[row.plan_code.strip()] = PlanTierEntry(
                tier=resolver._to_entry(row.plan_code, row.tier).tier,
                interval=row.interval,
            )
        return resolver


async def load_plan_tier_resolver(store: "BillingStore") -> PlanTierResolver:
    rows = await store.list_plan_mappings()
    resolver = PlanTierResolver.from_sources(
        shared.settings.PAYSTACK_PLAN_TIERS or {},
        rows,
        baseline=shared.settings.BILLING_BASELINE_TIER,
    )
    shared.logger.debug("plan_tier_resolver_loaded", plan_count=len(resolver._entries))
    return resolver
