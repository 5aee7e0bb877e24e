from billsync.models.tenant import Tenant
from billsync.models.subscription import Subscription, SubscriptionStatus
from billsync.models.usage import UsageMetric, UsageRecord
from billsync.models.plan import PlanTierMapping

__all__ = [
    "Tenant",
    "Subscription",
    "SubscriptionStatus",
    "UsageMetric",
    "UsageRecord",
    "PlanTierMapping",
]
