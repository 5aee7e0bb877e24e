from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4
from typing import Optional
from sqlalchemy import (
    BigInteger,
    Boolean,
    String,
    ForeignKey,
    UniqueConstraint,
    Uuid as PG_UUID,
)
from sqlalchemy.orm import Mapped, mapped_column

from billsync.shared.db.base import Base, UTCDateTime


class UsageMetric(str, Enum):
    PAYMENT = "payment"
    INVOICE = "invoice"


class UsageRecord(Base):
    """
    Append-only billing ledger row (payments and invoices).

    period_start == period_end marks a placeholder period written before the
    owning subscription's billing period was known.
    """

    __tablename__ = "usage_records"
    __table_args__ = (
        UniqueConstraint("reference", "metric", name="uq_usage_records_reference_metric"),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subscription_id: Mapped[UUID] = mapped_column(
        PG_UUID(),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Transaction reference (payments) or invoice code (invoices)
    reference: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    metric: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Optional[int]] = mapped_column(BigInteger)
    paid: Mapped[bool] = mapped_column(Boolean, default=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    period_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=lambda: datetime.now(timezone.utc)
    )

    @property
    def has_placeholder_period(self) -> bool:
        return self.period_start == self.period_end
