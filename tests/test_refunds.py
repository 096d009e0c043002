"""
Refund tiers by cancellation policy
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from rentals.domain.calendar import day_start
from rentals.domain.refunds import days_until, hours_until, refund_amount, refund_percentage
from rentals.models import CancellationPolicy

CHECK_IN = date(2026, 5, 20)


def days_before(days: float):
    return day_start(CHECK_IN) - timedelta(days=days)


class TestRefundTable:
    @pytest.mark.parametrize(
        "policy,days,expected",
        [
            (CancellationPolicy.FLEXIBLE, 1, 100),
            (CancellationPolicy.FLEXIBLE, 0, 0),
            (CancellationPolicy.MODERATE, 6, 100),
            (CancellationPolicy.MODERATE, 5, 100),
            (CancellationPolicy.MODERATE, 3, 50),
            (CancellationPolicy.MODERATE, 0, 0),
            (CancellationPolicy.STRICT, 7, 100),
            (CancellationPolicy.STRICT, 6, 50),
            (CancellationPolicy.STRICT, 0, 0),
            (CancellationPolicy.SUPER_STRICT, 30, 0),
        ],
    )
    def test_percentages(self, policy, days, expected):
        assert refund_percentage(policy, days) == expected

    def test_moderate_six_days_full_refund_plus_deposit(self):
        pct = refund_percentage(CancellationPolicy.MODERATE, days_until(CHECK_IN, days_before(6)))
        assert refund_amount(Decimal("500"), Decimal("75"), pct) == Decimal("575.00")

    def test_moderate_three_days_half_refund_plus_deposit(self):
        pct = refund_percentage(CancellationPolicy.MODERATE, days_until(CHECK_IN, days_before(3)))
        assert refund_amount(Decimal("500"), Decimal("75"), pct) == Decimal("325.00")

    def test_same_day_deposit_still_returned(self):
        now = day_start(CHECK_IN) + timedelta(hours=9)
        pct = refund_percentage(CancellationPolicy.MODERATE, days_until(CHECK_IN, now))
        assert pct == 0
        assert refund_amount(Decimal("500"), Decimal("75"), pct) == Decimal("75.00")


class TestTimeUntilCheckIn:
    def test_partial_day_rounds_up(self):
        assert days_until(CHECK_IN, days_before(2.5)) == 3

    def test_hours(self):
        assert hours_until(CHECK_IN, days_before(1)) == 24
