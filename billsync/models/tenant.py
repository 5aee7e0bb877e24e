from uuid import UUID, uuid4
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Uuid as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from billsync.shared.db.base import Base, UTCDateTime


class Tenant(Base):
    """
    Organization owning a subscription.

    The subscription_* columns are a denormalized mirror of the authoritative
    Subscription row, written only by the billing reconciliation engine.
    """

    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255))

    subscription_status: Mapped[Optional[str]] = mapped_column(String(20))
    subscription_tier: Mapped[str] = mapped_column(String(20), default="free")
    subscription_expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
