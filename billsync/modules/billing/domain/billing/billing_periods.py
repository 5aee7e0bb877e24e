"""
Billing period derivation.

Paystack never sends period bounds on subscription events (only on invoices),
so the period is rebuilt from the subscription's creation time plus either the
next payment date or the plan interval.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Any, Optional, Tuple

from dateutil.relativedelta import relativedelta

from . import paystack_shared as shared

Period = Tuple[Optional[datetime], Optional[datetime]]

UNKNOWN_PERIOD: Period = (None, None)

_INTERVALS: dict[str, relativedelta] = {
    "daily": relativedelta(days=1),
    "day": relativedelta(days=1),
    "weekly": relativedelta(weeks=1),
    "week": relativedelta(weeks=1),
    "monthly": relativedelta(months=1),
    "month": relativedelta(months=1),
    "quarterly": relativedelta(months=3),
    "biannually": relativedelta(months=6),
    "annually": relativedelta(years=1),
    "yearly": relativedelta(years=1),
    "year": relativedelta(years=1),
}


def interval_delta(interval: Optional[str]) -> Optional[relativedelta]:
    if not interval:
        return None
    return _INTERVALS.get(interval.strip().lower())


def start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)


def end_of_day(value: datetime) -> datetime:
    return datetime.combine(value.astimezone(timezone.utc).date(), time.max, tzinfo=timezone.utc)


def compute_period(
    created_at: Any,
    next_payment_date: Any = None,
    interval: Optional[str] = None,
) -> Period:
    """
    Returns (period_start, period_end) or (None, None) when the period is not
    knowable yet. Callers must not write unknown bounds.
    """
    created = shared.parse_paystack_datetime(created_at)
    if created is None:
        return UNKNOWN_PERIOD

    period_start = start_of_day(created)
    next_payment = shared.parse_paystack_datetime(next_payment_date)
    if next_payment is not None:
        period_end = end_of_day(next_payment - timedelta(days=1))
    else:
        delta = interval_delta(interval)
        if delta is None:
            shared.logger.info(
                "billing_period_end_unknown", interval=interval, created_at=str(created)
            )
            return UNKNOWN_PERIOD
        period_end = end_of_day(period_start + delta - timedelta(days=1))

    if period_end < period_start:
        shared.logger.warning(
            "billing_period_inverted",
            period_start=period_start.isoformat(),
            period_end=period_end.isoformat(),
        )
        return UNKNOWN_PERIOD
    return period_start, period_end


def period_from_subscription(
    data: dict[str, Any], interval: Optional[str] = None
) -> Period:
    """Period for a Paystack subscription object (webhook data or API record)."""
    return compute_period(
        data.get("createdAt") or data.get("created_at"),
        data.get("next_payment_date"),
        interval or shared.plan_interval_of(data),
    )


def is_period_known(period: Period) -> bool:
    return period[0] is not None and period[1] is not None
