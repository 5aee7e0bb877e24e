"""Handler context and result types shared by the webhook event handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from .plan_tiers import PlanTierResolver
from .subscription_store import BillingStore
from .usage_ledger import UsageLedger

if TYPE_CHECKING:
    from .paystack_client_impl import PaystackClient


class ReconciliationAction(str, Enum):
    CREATED = "created"
    COMPLETED = "completed"
    SWITCHED = "switched"
    REFRESHED = "refreshed"
    UPDATED = "updated"
    RECORDED = "recorded"
    IGNORED = "ignored"
    NOOP = "noop"


@dataclass(frozen=True)
class ReconciliationResult:
    action: ReconciliationAction
    tenant_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    detail: Optional[str] = None


@dataclass
class ReconciliationContext:
    """Everything a handler may touch. The client is None when no secret is configured."""

    store: BillingStore
    tiers: PlanTierResolver
    client: Optional["PaystackClient"] = None
    ledger: UsageLedger = field(init=False)

    def __post_init__(self) -> None:
        self.ledger = UsageLedger(self.store)
