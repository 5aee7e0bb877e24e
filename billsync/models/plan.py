from typing import Optional
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from billsync.shared.db.base import Base


class PlanTierMapping(Base):
    """
    Read-only lookup from a Paystack plan code to an internal tier.
    Rows here override the static PAYSTACK_PLAN_TIERS setting.
    """

    __tablename__ = "plan_tier_mappings"

    plan_code: Mapped[str] = mapped_column(String(255), primary_key=True)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    # Paystack interval name: daily, weekly, monthly, quarterly, biannually, annually
    interval: Mapped[Optional[str]] = mapped_column(String(20))
