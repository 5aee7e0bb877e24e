from datetime import datetime, timezone

import pytest

from billsync.modules.billing.domain.billing.billing_periods import (
    compute_period,
    is_period_known,
    period_from_subscription,
)


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_period_from_next_payment_date():
    start, end = compute_period("2024-01-01T10:00:00.000Z", "2024-02-01T00:00:00.000Z")
    assert start == _utc(2024, 1, 1)
    assert end == _utc(2024, 1, 31, 23, 59, 59, 999999)


def test_next_payment_date_wins_over_interval():
    start, end = compute_period(
        "2024-03-15T08:00:00Z", "2024-04-10T00:00:00Z", interval="annually"
    )
    assert start == _utc(2024, 3, 15)
    assert end == _utc(2024, 4, 9, 23, 59, 59, 999999)


@pytest.mark.parametrize(
    "interval,expected_end",
    [
        ("monthly", _utc(2024, 1, 31, 23, 59, 59, 999999)),
        ("month", _utc(2024, 1, 31, 23, 59, 59, 999999)),
        ("weekly", _utc(2024, 1, 7, 23, 59, 59, 999999)),
        ("daily", _utc(2024, 1, 1, 23, 59, 59, 999999)),
        ("quarterly", _utc(2024, 3, 31, 23, 59, 59, 999999)),
        ("biannually", _utc(2024, 6, 30, 23, 59, 59, 999999)),
        ("annually", _utc(2024, 12, 31, 23, 59, 59, 999999)),
    ],
)
def test_period_from_interval(interval, expected_end):
    start, end = compute_period("2023-12-31T22:00:00-02:00", None, interval)
    # 22:00 at -02:00 is 00:00 UTC on Jan 1st
    assert start == _utc(2024, 1, 1)
    assert end == expected_end


def test_month_end_creation_uses_calendar_months():
    start, end = compute_period("2024-01-31T12:00:00Z", None, "monthly")
    assert start == _utc(2024, 1, 31)
    assert end == _utc(2024, 2, 28, 23, 59, 59, 999999)


def test_missing_creation_time_is_unknown():
    assert compute_period(None, "2024-02-01T00:00:00Z", "monthly") == (None, None)


def test_unknown_interval_without_next_payment_is_unknown():
    period = compute_period("2024-01-01T00:00:00Z", None, "hourly")
    assert period == (None, None)
    assert not is_period_known(period)


def test_next_payment_before_creation_is_unknown():
    assert compute_period("2024-02-10T00:00:00Z", "2024-02-10T00:00:00Z") == (None, None)


def test_unparseable_timestamps_are_unknown():
    assert compute_period("not-a-date", None, "monthly") == (None, None)


def test_period_from_subscription_payload():
    data = {
        "createdAt": "2024-05-05T12:30:00.000Z",
        "next_payment_date": None,
        "plan": {"plan_code": "PLN_x", "interval": "weekly"},
    }
    start, end = period_from_subscription(data)
    assert start == _utc(2024, 5, 5)
    assert end == _utc(2024, 5, 11, 23, 59, 59, 999999)
