"""Usage ledger writer (payments and invoices)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from billsync.models.subscription import Subscription
from billsync.models.usage import UsageMetric, UsageRecord

from . import paystack_shared as shared
from .subscription_store import BillingStore


class UsageLedger:
    def __init__(self, store: BillingStore):
        self.store = store

    async def record_payment(
        self,
        subscription: Subscription,
        reference: Optional[str],
        amount: Optional[int],
        paid_at: datetime,
    ) -> tuple[UsageRecord, bool]:
        """
        Payment row with a placeholder period (paid_at, paid_at).
        The true bounds are written later by repair_periods.
        """
        record, created = await self.store.append_usage(
            {
                "tenant_id": subscription.tenant_id,
                "subscription_id": subscription.id,
                "reference": reference,
                "metric": UsageMetric.PAYMENT.value,
                "amount": amount,
                "paid": True,
                "paid_at": paid_at,
                "period_start": paid_at,
                "period_end": paid_at,
            }
        )
        if created:
            shared.logger.info(
                "usage_payment_recorded",
                tenant_id=str(subscription.tenant_id),
                subscription_id=str(subscription.id),
                reference=reference,
                amount=amount,
            )
        return record, created

    async def record_invoice(
        self,
        subscription: Subscription,
        invoice_code: Optional[str],
        amount: Optional[int],
        period_start: datetime,
        period_end: datetime,
        paid: bool = False,
        paid_at: Optional[datetime] = None,
    ) -> tuple[UsageRecord, bool]:
        record, created = await self.store.append_usage(
            {
                "tenant_id": subscription.tenant_id,
                "subscription_id": subscription.id,
                "reference": invoice_code,
                "metric": UsageMetric.INVOICE.value,
                "amount": amount,
                "paid": paid,
                "paid_at": paid_at,
                "period_start": period_start,
                "period_end": period_end,
            }
        )
        if created:
            shared.logger.info(
                "usage_invoice_recorded",
                tenant_id=str(subscription.tenant_id),
                subscription_id=str(subscription.id),
                invoice_code=invoice_code,
                paid=paid,
            )
        return record, created

    async def set_invoice_paid(
        self, invoice_code: str, paid: bool, paid_at: Optional[datetime] = None
    ) -> int:
        updated = await self.store.update_usage_by_reference(
            invoice_code,
            UsageMetric.INVOICE.value,
            {"paid": paid, "paid_at": paid_at if paid else None},
        )
        if not updated:
            shared.logger.info("usage_invoice_not_found", invoice_code=invoice_code)
        return updated

    async def repair_periods(
        self,
        subscription: Subscription,
        period_start: Optional[datetime],
        period_end: Optional[datetime],
    ) -> int:
        """Overwrite placeholder bounds on this subscription's rows once the period is known."""
        if period_start is None or period_end is None:
            return 0
        repaired = await self.store.repair_placeholder_periods(
            subscription.id, period_start, period_end
        )
        if repaired:
            shared.logger.info(
                "usage_placeholder_periods_repaired",
                subscription_id=str(subscription.id),
                rows=repaired,
            )
        return repaired
