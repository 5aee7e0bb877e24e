from .paystack_billing import BillingService
from .paystack_client_impl import PaystackClient
from .paystack_webhook_impl import EVENT_HANDLERS, WebhookHandler
from .plan_tiers import PlanTierResolver, load_plan_tier_resolver
from .subscription_store import BillingStore, SqlAlchemyBillingStore

__all__ = [
    "BillingService",
    "BillingStore",
    "EVENT_HANDLERS",
    "PaystackClient",
    "PlanTierResolver",
    "SqlAlchemyBillingStore",
    "WebhookHandler",
    "load_plan_tier_resolver",
]
