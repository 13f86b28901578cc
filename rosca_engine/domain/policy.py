"""
rosca_engine.domain.policy -- Pure money and calendar rules.

ZERO I/O.  Every function is deterministic in its arguments so it can be
property-tested without a database.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Sequence

from rosca_kernel.db.types import ZERO, round_money
from rosca_kernel.models.circle import IncompleteContributionPolicy

from rosca_engine.domain.types import ReminderSlot

# Policies that open a grace window when the deadline passes unpaid.
GRACE_POLICIES: frozenset[IncompleteContributionPolicy] = frozenset({
    IncompleteContributionPolicy.STRICT_WAIT,
    IncompleteContributionPolicy.GRACE_THEN_PROCEED,
    IncompleteContributionPolicy.GRACE_THEN_COVER,
})

# Policies that try the community reserve before recording defaults.
COVER_POLICIES: frozenset[IncompleteContributionPolicy] = frozenset({
    IncompleteContributionPolicy.GRACE_THEN_COVER,
    IncompleteContributionPolicy.IMMEDIATE_COVER,
})


def split_payout(collected: Decimal, fee_percent: Decimal) -> tuple[Decimal, Decimal]:
    """Return ``(platform_fee, payout_amount)``; fee rounded half-up to cents."""
    fee = round_money(collected * fee_percent)
    return fee, collected - fee


def late_fee_for(
    amount: Decimal,
    days_late: int,
    grace_period_days: int,
    late_fee_percent: Decimal,
) -> Decimal:
    """Late fee applies only once a payment is later than the grace window."""
    if days_late <= grace_period_days:
        return ZERO
    return round_money(amount * late_fee_percent)


def days_late(due_date: date, paid_on: date) -> int:
    return max(0, (paid_on - due_date).days)


def grace_days_for(
    policy: IncompleteContributionPolicy,
    circle_grace_days: int,
    strict_wait_max_days: int,
) -> int:
    if policy == IncompleteContributionPolicy.STRICT_WAIT:
        return strict_wait_max_days
    return circle_grace_days


def reminder_schedule(
    deadline: date,
    offsets_days: Sequence[int],
    hour: int,
    now: datetime,
) -> list[ReminderSlot]:
    """Reminder slots strictly after ``now``, earliest first.

    Send times carry ``now``'s tzinfo so they compare cleanly with the
    clock the caller is using.
    """
    slots = []
    for offset in sorted(set(offsets_days), reverse=True):
        day = deadline - timedelta(days=offset)
        send_at = datetime.combine(day, time(hour=hour), tzinfo=now.tzinfo)
        if send_at > now:
            slots.append(ReminderSlot(days_before=offset, send_at=send_at, deadline=deadline))
    return slots


def rate(numerator: int, denominator: int) -> Decimal:
    """Fraction rounded to 6 dp; zero when there is nothing to divide."""
    if denominator <= 0:
        return Decimal("0")
    return (Decimal(numerator) / Decimal(denominator)).quantize(Decimal("0.000001"))
