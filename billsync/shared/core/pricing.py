from enum import Enum

__all__ = [
    "PricingTier",
    "normalize_tier",
]


class PricingTier(str, Enum):
    """Available subscription tiers."""

    FREE = "free"
    BASIC = "basic"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


def normalize_tier(
    tier: PricingTier | str | None, default: PricingTier = PricingTier.FREE
) -> PricingTier:
    """Map arbitrary tier values to a supported PricingTier."""
    if isinstance(tier, PricingTier):
        return tier
    if isinstance(tier, str):
        candidate = tier.strip().lower()
        try:
            return PricingTier(candidate)
        except ValueError:
            return default
    return default
