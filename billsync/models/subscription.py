from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4
from typing import Optional
from sqlalchemy import (
    BigInteger,
    Boolean,
    String,
    ForeignKey,
    Uuid as PG_UUID,
)
from sqlalchemy.orm import Mapped, mapped_column

from billsync.shared.db.base import Base, UTCDateTime


class SubscriptionStatus(str, Enum):
    """Local subscription statuses (Paystack statuses plus tenant-facing ones)."""

    TRIALING = "trialing"
    ACTIVE = "active"
    NON_RENEWING = "non-renewing"
    ATTENTION = "attention"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def from_provider(
        cls, value: Optional[str], default: "SubscriptionStatus | None" = None
    ) -> "SubscriptionStatus":
        """Map a Paystack status string onto the local enum."""
        fallback = default or cls.ACTIVE
        if not value:
            return fallback
        candidate = str(value).strip().lower().replace("_", "-")
        aliases = {
            "complete": cls.COMPLETED,
            "canceled": cls.CANCELLED,
            "past-due": cls.PAST_DUE,
        }
        if candidate in aliases:
            return aliases[candidate]
        try:
            return cls(candidate)
        except ValueError:
            return fallback


TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELLED, SubscriptionStatus.COMPLETED})


class Subscription(Base):
    """
    Authoritative per-tenant subscription record.

    No unique constraint on tenant_id: terminal rows are retained for history,
    and "one non-terminal row per tenant" is enforced by the billing store.
    """

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Paystack IDs
    paystack_subscription_code: Mapped[Optional[str]] = mapped_column(
        String(255), index=True
    )
    paystack_plan_code: Mapped[Optional[str]] = mapped_column(String(255))
    paystack_customer_code: Mapped[Optional[str]] = mapped_column(String(255))
    paystack_email_token: Mapped[Optional[str]] = mapped_column(String(255))
    # Fernet-encrypted reusable card authorization
    paystack_auth_code: Mapped[Optional[str]] = mapped_column(String(512))

    status: Mapped[str] = mapped_column(
        String(20), default=SubscriptionStatus.ACTIVE.value, index=True
    )
    tier: Mapped[str] = mapped_column(String(20), default="free")
    # Smallest currency unit
    amount: Mapped[Optional[int]] = mapped_column(BigInteger)

    current_period_start: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    current_period_end: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    next_payment_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    card_expiring: Mapped[bool] = mapped_column(Boolean, default=False)
    card_expiry_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_preliminary(self) -> bool:
        return not self.paystack_subscription_code

    @property
    def status_enum(self) -> SubscriptionStatus:
        return SubscriptionStatus.from_provider(self.status)
