import math
from datetime import date, datetime
from decimal import Decimal

from rentals.domain.calendar import day_start
from rentals.models import CancellationPolicy

# (days before check-in for full refund, partial percentage, days for partial)
REFUND_TIERS = {
    CancellationPolicy.FLEXIBLE: (1, 0, None),
    CancellationPolicy.MODERATE: (5, 50, 1),
    CancellationPolicy.STRICT: (7, 50, 1),
}


def hours_until(check_in: date, now: datetime) -> float:
    return (day_start(check_in) - now).total_seconds() / 3600


def days_until(check_in: date, now: datetime) -> int:
    """Whole days until check-in, rounded up (23 hours away counts as 1)."""
    return math.ceil(hours_until(check_in, now) / 24)


def refund_percentage(policy: CancellationPolicy, days: int) -> int:
    tier = REFUND_TIERS.get(CancellationPolicy(policy))
    if tier is None:
        # SuperStrict: ничего не возвращаем
        return 0

    full_days, partial_pct, partial_days = tier
    if days >= full_days:
        return 100
    if partial_days is not None and days >= partial_days:
        return partial_pct
    return 0


def refund_amount(total: Decimal, pet_deposit: Decimal, percentage: int) -> Decimal:
    """Pet deposit is returned in full whatever the tier."""
    return (Decimal(total) * percentage / 100 + Decimal(pet_deposit)).quantize(Decimal("0.01"))
