"""
Subscription store: the authoritative Subscription rows plus the tenant mirror.

Every write commits on its own. Handlers run as a sequence of independent
read-then-write steps, so a crash between two steps must leave state that a
later event (or a redelivery of the same one) can still repair.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Protocol, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billsync.models.plan import PlanTierMapping
from billsync.models.subscription import Subscription
from billsync.models.tenant import Tenant
from billsync.models.usage import UsageRecord
from billsync.shared.core.exceptions import PersistenceError

from . import paystack_shared as shared


class BillingStore(Protocol):
    """Persistence seam used by the webhook handlers; faked in tests."""

    async def get_subscription_for_tenant(self, tenant_id: UUID) -> Optional[Subscription]: ...

    async def get_subscription_by_code(self, subscription_code: str) -> Optional[Subscription]: ...

    async def get_or_create_subscription(
        self, tenant_id: UUID, values: dict[str, Any]
    ) -> tuple[Subscription, bool]: ...

    async def create_subscription(
        self, tenant_id: UUID, values: dict[str, Any]
    ) -> Subscription: ...

    async def update_subscription(
        self, subscription: Subscription, values: dict[str, Any]
    ) -> Subscription: ...

    async def update_subscription_by_code(
        self, subscription_code: str, values: dict[str, Any]
    ) -> int: ...

    async def mirror_tenant(
        self,
        tenant_id: UUID,
        status: str,
        tier: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> bool: ...

    async def append_usage(self, values: dict[str, Any]) -> tuple[UsageRecord, bool]: ...

    async def get_usage_by_reference(
        self, reference: str, metric: str
    ) -> Optional[UsageRecord]: ...

    async def update_usage_by_reference(
        self, reference: str, metric: str, values: dict[str, Any]
    ) -> int: ...

    async def repair_placeholder_periods(
        self, subscription_id: UUID, period_start: datetime, period_end: datetime
    ) -> int: ...

    async def list_plan_mappings(self) -> Sequence[PlanTierMapping]: ...


def pick_current(rows: Sequence[Subscription]) -> Optional[Subscription]:
    """Non-terminal row wins; otherwise the most recent terminal one."""
    for row in rows:
        if not row.status_enum.is_terminal:
            return row
    return rows[0] if rows else None


class SqlAlchemyBillingStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _write(self, operation: str, **context: Any) -> AsyncIterator[None]:
        try:
            yield
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            shared.logger.error(
                "billing_store_write_failed",
                operation=operation,
                error=str(exc),
                **context,
            )
            raise PersistenceError(
                f"{operation} failed",
                details={"operation": operation, **{k: str(v) for k, v in context.items()}},
            ) from exc

    async def _read(self, operation: str, stmt: Any) -> Any:
        try:
            return await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            shared.logger.error("billing_store_read_failed", operation=operation, error=str(exc))
            raise PersistenceError(f"{operation} failed", details={"operation": operation}) from exc

    async def _tenant_subscriptions(self, tenant_id: UUID) -> list[Subscription]:
        result = await self._read(
            "get_subscription_for_tenant",
            select(Subscription)
            .where(Subscription.tenant_id == tenant_id)
            .order_by(Subscription.created_at.desc()),
        )
        return list(result.scalars().all())

    async def get_subscription_for_tenant(self, tenant_id: UUID) -> Optional[Subscription]:
        return pick_current(await self._tenant_subscriptions(tenant_id))

    async def get_subscription_by_code(self, subscription_code: str) -> Optional[Subscription]:
        result = await self._read(
            "get_subscription_by_code",
            select(Subscription)
            .where(Subscription.paystack_subscription_code == subscription_code)
            .order_by(Subscription.created_at.desc()),
        )
        return pick_current(list(result.scalars().all()))

    async def create_subscription(
        self, tenant_id: UUID, values: dict[str, Any]
    ) -> Subscription:
        sub = Subscription(tenant_id=tenant_id, **values)
        async with self._write("create_subscription", tenant_id=tenant_id):
            self.db.add(sub)
        shared.logger.info(
            "subscription_row_created",
            tenant_id=str(tenant_id),
            subscription_id=str(sub.id),
            subscription_code=sub.paystack_subscription_code,
        )
        return sub

    async def get_or_create_subscription(
        self, tenant_id: UUID, values: dict[str, Any]
    ) -> tuple[Subscription, bool]:
        """
        Re-checks for a live row right before inserting; a concurrent handler
        may have created one since the caller last looked.
        """
        existing = pick_current(await self._tenant_subscriptions(tenant_id))
        if existing is not None and not existing.status_enum.is_terminal:
            shared.logger.info(
                "subscription_row_already_present",
                tenant_id=str(tenant_id),
                subscription_id=str(existing.id),
            )
            return existing, False
        return await self.create_subscription(tenant_id, values), True

    async def update_subscription(
        self, subscription: Subscription, values: dict[str, Any]
    ) -> Subscription:
        async with self._write(
            "update_subscription",
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
        ):
            for key, value in values.items():
                setattr(subscription, key, value)
        return subscription

    async def update_subscription_by_code(
        self, subscription_code: str, values: dict[str, Any]
    ) -> int:
        async with self._write(
            "update_subscription_by_code", subscription_code=subscription_code
        ):
            result = await self.db.execute(
                update(Subscription)
                .where(Subscription.paystack_subscription_code == subscription_code)
                .values(**values)
            )
        if not result.rowcount:
            shared.logger.info(
                "subscription_update_no_rows", subscription_code=subscription_code
            )
        return int(result.rowcount or 0)

    async def mirror_tenant(
        self,
        tenant_id: UUID,
        status: str,
        tier: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> bool:
        values: dict[str, Any] = {"subscription_status": status}
        if tier is not None:
            values["subscription_tier"] = tier
        if expires_at is not None:
            values["subscription_expires_at"] = expires_at

        async with self._write("mirror_tenant", tenant_id=tenant_id):
            result = await self.db.execute(
                update(Tenant).where(Tenant.id == tenant_id).values(**values)
            )
        if not result.rowcount:
            shared.logger.warning("tenant_mirror_target_missing", tenant_id=str(tenant_id))
            return False
        return True

    async def get_usage_by_reference(
        self, reference: str, metric: str
    ) -> Optional[UsageRecord]:
        result = await self._read(
            "get_usage_by_reference",
            select(UsageRecord).where(
                UsageRecord.reference == reference, UsageRecord.metric == metric
            ),
        )
        return result.scalars().first()

    async def append_usage(self, values: dict[str, Any]) -> tuple[UsageRecord, bool]:
        """Idempotent on (reference, metric); returns (row, created)."""
        reference = values.get("reference")
        metric = str(values["metric"])
        if reference:
            existing = await self.get_usage_by_reference(reference, metric)
            if existing is not None:
                shared.logger.info(
                    "usage_record_already_recorded", reference=reference, metric=metric
                )
                return existing, False

        record = UsageRecord(**values)
        try:
            async with self._write(
                "append_usage",
                reference=reference,
                metric=metric,
                subscription_id=values.get("subscription_id"),
            ):
                self.db.add(record)
        except PersistenceError as exc:
            # Lost an insert race against a redelivery of the same event.
            if reference and isinstance(exc.__cause__, IntegrityError):
                existing = await self.get_usage_by_reference(reference, metric)
                if existing is not None:
                    return existing, False
            raise
        return record, True

    async def update_usage_by_reference(
        self, reference: str, metric: str, values: dict[str, Any]
    ) -> int:
        async with self._write("update_usage_by_reference", reference=reference, metric=metric):
            result = await self.db.execute(
                update(UsageRecord)
                .where(UsageRecord.reference == reference, UsageRecord.metric == metric)
                .values(**values)
            )
        return int(result.rowcount or 0)

    async def repair_placeholder_periods(
        self, subscription_id: UUID, period_start: datetime, period_end: datetime
    ) -> int:
        async with self._write("repair_placeholder_periods", subscription_id=subscription_id):
            result = await self.db.execute(
                update(UsageRecord)
                .where(
                    UsageRecord.subscription_id == subscription_id,
                    UsageRecord.period_start == UsageRecord.period_end,
                )
                .values(period_start=period_start, period_end=period_end)
                .execution_options(synchronize_session="fetch")
            )
        return int(result.rowcount or 0)

    async def list_plan_mappings(self) -> Sequence[PlanTierMapping]:
        result = await self._read("list_plan_mappings", select(PlanTierMapping))
        return list(result.scalars().all())
