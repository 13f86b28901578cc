"""
Notification catalog.

Builds the ``NotificationMessage`` for each member-facing engine event.
Rendering and localization happen downstream; these are plain defaults.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from rosca_kernel.models.circle import Circle
from rosca_kernel.models.cycle import CircleCycle

from rosca_engine.domain.types import NotificationMessage, NotificationPriority


def _cycle_data(circle: Circle, cycle: CircleCycle, **extra: object) -> dict:
    return {
        "circle_id": circle.id,
        "cycle_id": cycle.id,
        "cycle_number": cycle.cycle_number,
        **extra,
    }


def cycle_started(circle: Circle, cycle: CircleCycle) -> NotificationMessage:
    return NotificationMessage(
        type="cycle_started",
        title=f"{circle.name}: cycle {cycle.cycle_number} has started",
        body=(
            f"Please contribute {circle.contribution_amount} "
            f"by {cycle.contribution_deadline.isoformat()}."
        ),
        data=_cycle_data(circle, cycle, deadline=cycle.contribution_deadline),
    )


def recipient_cycle_started(circle: Circle, cycle: CircleCycle) -> NotificationMessage:
    return NotificationMessage(
        type="payout_recipient",
        title=f"{circle.name}: you receive this cycle's payout",
        body=(
            f"Cycle {cycle.cycle_number} pays out to you once contributions "
            f"close on {cycle.contribution_deadline.isoformat()}."
        ),
        priority=NotificationPriority.HIGH,
        data=_cycle_data(circle, cycle, expected_amount=cycle.expected_amount),
    )


def contribution_reminder(
    circle: Circle, cycle: CircleCycle, days_before: int,
) -> NotificationMessage:
    when = "today" if days_before == 0 else f"in {days_before} day(s)"
    return NotificationMessage(
        type="contribution_reminder",
        title=f"{circle.name}: contribution due {when}",
        body=f"Your contribution of {circle.contribution_amount} is due {when}.",
        priority=NotificationPriority.HIGH if days_before <= 1 else NotificationPriority.NORMAL,
        data=_cycle_data(circle, cycle, days_before=days_before),
    )


def contribution_late(
    circle: Circle, cycle: CircleCycle, grace_period_end: date,
) -> NotificationMessage:
    return NotificationMessage(
        type="contribution_late",
        title=f"{circle.name}: contribution overdue",
        body=(
            "The contribution deadline has passed. Pay before "
            f"{grace_period_end.isoformat()} to avoid a default."
        ),
        priority=NotificationPriority.HIGH,
        data=_cycle_data(circle, cycle, grace_period_end=grace_period_end),
    )


def payout_delayed(
    circle: Circle, cycle: CircleCycle, grace_period_end: date,
) -> NotificationMessage:
    return NotificationMessage(
        type="payout_delayed",
        title=f"{circle.name}: payout delayed",
        body=(
            "Some members have not contributed yet. Your payout will follow "
            f"the grace period ending {grace_period_end.isoformat()}."
        ),
        data=_cycle_data(circle, cycle, grace_period_end=grace_period_end),
    )


def default_recorded(
    circle: Circle, cycle: CircleCycle, default_amount: Decimal,
) -> NotificationMessage:
    return NotificationMessage(
        type="default_recorded",
        title=f"{circle.name}: missed contribution recorded",
        body=f"A default of {default_amount} was recorded for cycle {cycle.cycle_number}.",
        priority=NotificationPriority.HIGH,
        data=_cycle_data(circle, cycle, default_amount=default_amount),
    )


def vouchee_defaulted(circle: Circle, cycle: CircleCycle) -> NotificationMessage:
    return NotificationMessage(
        type="vouchee_defaulted",
        title=f"{circle.name}: a member you vouched for defaulted",
        body=f"A member you vouched for missed the cycle {cycle.cycle_number} contribution.",
        priority=NotificationPriority.HIGH,
        data=_cycle_data(circle, cycle),
    )


def payout_initiated(circle: Circle, cycle: CircleCycle) -> NotificationMessage:
    return NotificationMessage(
        type="payout_initiated",
        title=f"{circle.name}: payout on its way",
        body=f"Your payout of {cycle.payout_amount} has been sent.",
        data=_cycle_data(circle, cycle, payout_amount=cycle.payout_amount),
    )


def payout_received(circle: Circle, cycle: CircleCycle) -> NotificationMessage:
    return NotificationMessage(
        type="payout_received",
        title=f"{circle.name}: payout received",
        body=f"Your payout of {cycle.payout_amount} has arrived.",
        data=_cycle_data(circle, cycle, payout_amount=cycle.payout_amount),
    )


def payout_failed(circle: Circle, cycle: CircleCycle) -> NotificationMessage:
    return NotificationMessage(
        type="payout_failed",
        title=f"{circle.name}: payout could not be completed",
        body="We could not send your payout. Our team has been alerted.",
        priority=NotificationPriority.HIGH,
        data=_cycle_data(circle, cycle, last_error=cycle.last_payout_error),
    )


def contribution_received(
    circle: Circle, cycle: CircleCycle, amount: Decimal, status: str,
) -> NotificationMessage:
    return NotificationMessage(
        type="contribution_received",
        title=f"{circle.name}: contribution received",
        body=f"We received {amount} for cycle {cycle.cycle_number}.",
        priority=NotificationPriority.LOW,
        data=_cycle_data(circle, cycle, amount=amount, status=status),
    )


def contribution_failed(
    circle: Circle, cycle: CircleCycle, reason: str | None,
) -> NotificationMessage:
    return NotificationMessage(
        type="contribution_failed",
        title=f"{circle.name}: payment failed",
        body="Your contribution payment did not go through. Please try again.",
        priority=NotificationPriority.HIGH,
        data=_cycle_data(circle, cycle, reason=reason),
    )


def circle_advanced(circle: Circle, next_cycle: CircleCycle) -> NotificationMessage:
    return NotificationMessage(
        type="circle_advanced",
        title=f"{circle.name}: cycle {next_cycle.cycle_number} is next",
        body=f"The next cycle starts on {next_cycle.start_date.isoformat()}.",
        data=_cycle_data(circle, next_cycle, start_date=next_cycle.start_date),
    )


def next_recipient(circle: Circle, next_cycle: CircleCycle) -> NotificationMessage:
    return NotificationMessage(
        type="next_recipient",
        title=f"{circle.name}: you are next",
        body=f"You receive the payout of cycle {next_cycle.cycle_number}.",
        priority=NotificationPriority.HIGH,
        data=_cycle_data(circle, next_cycle),
    )


def circle_completed(circle: Circle) -> NotificationMessage:
    return NotificationMessage(
        type="circle_completed",
        title=f"{circle.name} is complete",
        body="Every member has received a payout. Thank you for saving together.",
        data={"circle_id": circle.id, "total_cycles": circle.total_cycles},
    )
