"""
Tenant resolution for inbound billing events.

Order: event metadata, then customer metadata, then an existing subscription
row by provider code. Metadata was written when the payment was initiated and
always wins over the store.
"""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from billsync.shared.core.exceptions import UnresolvedTenantError

from . import paystack_shared as shared
from .subscription_store import BillingStore


def tenant_id_from_metadata(metadata: Any, source: str = "metadata") -> Optional[UUID]:
    meta = shared.coerce_metadata(metadata)
    for key in shared.TENANT_METADATA_KEYS:
        raw = meta.get(key)
        if not raw:
            continue
        try:
            return UUID(str(raw))
        except ValueError:
            shared.logger.warning(
                "invalid_tenant_id_in_metadata", source=source, key=key, tenant_id=str(raw)[:64]
            )
    return None


async def resolve_tenant_id(data: dict[str, Any], store: BillingStore) -> UUID:
    tenant_id = tenant_id_from_metadata(data.get("metadata"))
    if tenant_id is not None:
        return tenant_id

    customer = data.get("customer")
    if isinstance(customer, dict):
        tenant_id = tenant_id_from_metadata(customer.get("metadata"), source="customer")
        if tenant_id is not None:
            return tenant_id

    subscription_code = shared.subscription_code_of(data)
    if subscription_code:
        sub = await store.get_subscription_by_code(subscription_code)
        if sub is not None:
            return sub.tenant_id

    raise UnresolvedTenantError(
        "No tenant could be resolved for billing event",
        details={
            "subscription_code": subscription_code,
            "customer_code": shared.customer_code_of(data),
        },
    )
