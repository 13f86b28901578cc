"""
CloseCyclesPhase -- finalizes paid-out cycles and moves the circle on.

For each ``payout_completed`` cycle: reward on-time contributors, close the
cycle, then either advance the circle to its next cycle or, after the last
cycle, complete the circle and persist its ``CircleCompletion`` statistics.
"""

from __future__ import annotations

from sqlalchemy import func, select

from rosca_kernel.db.types import ZERO
from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.circle import Circle, CircleStatus, MemberStatus
from rosca_kernel.models.cycle import (
    COLLECTED_STATUSES,
    CircleCycle,
    ContributionStatus,
    CycleContribution,
    CycleStatus,
)
from rosca_kernel.models.cycle_event import CycleEventType
from rosca_kernel.models.member_default import CircleCompletion, MemberDefault

from rosca_engine import messages
from rosca_engine.domain.policy import rate
from rosca_engine.phases.base import BasePhase, PhaseCounters
from rosca_engine.queries import active_members, contributions_for, final_payout_order

logger = get_logger("engine.closer")


class CloseCyclesPhase(BasePhase):

    name = "close_cycles"
    failure_event_type = CycleEventType.SYSTEM_ERROR

    def select_cycles(self) -> list[CircleCycle]:
        return list(
            self.ctx.session.execute(
                select(CircleCycle)
                .where(CircleCycle.status == CycleStatus.PAYOUT_COMPLETED.value)
                .order_by(CircleCycle.circle_id, CircleCycle.cycle_number)
            ).scalars()
        )

    def process_cycle(self, cycle: CircleCycle) -> PhaseCounters:
        circle = self.circle_of(cycle)
        deltas = self.ctx.settings.score_deltas

        rewarded = 0
        for contribution in contributions_for(self.ctx.session, cycle.id):
            if (
                contribution.contribution_status == ContributionStatus.COMPLETED
                and contribution.was_on_time
            ):
                self.ctx.adjust_score(
                    contribution.user_id,
                    "contribution_on_time",
                    deltas.contribution_on_time,
                    cycle_id=cycle.id,
                )
                rewarded += 1

        default_count = self.ctx.session.execute(
            select(func.count()).select_from(MemberDefault).where(
                MemberDefault.cycle_id == cycle.id,
            )
        ).scalar_one()

        self.ctx.transitions.transition(cycle, CycleStatus.CLOSED)
        self.ctx.events.record(
            CycleEventType.CYCLE_CLOSED,
            cycle,
            data={
                "default_count": default_count,
                "on_time_rewarded": rewarded,
                "payout_amount": cycle.payout_amount,
            },
        )
        logger.info(
            "cycle_closed",
            extra={"default_count": default_count, "on_time_rewarded": rewarded},
        )

        if cycle.cycle_number >= circle.total_cycles:
            self.complete_circle(circle, cycle)
        else:
            self.advance_circle(circle, cycle)
        return {"cycles_closed": 1}

    # -------------------------------------------------------------------------
    # Advance
    # -------------------------------------------------------------------------

    def advance_circle(self, circle: Circle, closed: CircleCycle) -> None:
        next_number = closed.cycle_number + 1
        next_cycle = self.ctx.session.execute(
            select(CircleCycle).where(
                CircleCycle.circle_id == circle.id,
                CircleCycle.cycle_number == next_number,
            )
        ).scalar_one_or_none()

        circle.current_cycle_number = next_number
        circle.current_cycle_id = next_cycle.id if next_cycle is not None else None
        self.ctx.session.flush()

        if next_cycle is None:
            # Cycle rows are created by circle setup; advancing past a gap is
            # left for an operator to repair.
            logger.warning("next_cycle_missing", extra={"next_cycle_number": next_number})
            self.ctx.alerts.raise_alert(
                "next_cycle_missing",
                cycle_id=closed.id,
                circle_id=circle.id,
                details={"next_cycle_number": next_number},
                dedupe=True,
            )
            return

        order = final_payout_order(self.ctx.session, circle.id)
        next_recipient = order.recipient_for(next_number) if order is not None else None

        for member in active_members(self.ctx.session, circle.id):
            if member.user_id == next_recipient:
                self.ctx.notifications.notify(
                    member.user_id, messages.next_recipient(circle, next_cycle),
                )
            else:
                self.ctx.notifications.notify(
                    member.user_id, messages.circle_advanced(circle, next_cycle),
                )

        self.ctx.events.record(
            CycleEventType.CIRCLE_ADVANCED,
            closed,
            data={
                "next_cycle_id": next_cycle.id,
                "next_cycle_number": next_number,
                "next_recipient_user_id": next_recipient,
            },
        )

    # -------------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------------

    def complete_circle(self, circle: Circle, last: CircleCycle) -> CircleCompletion:
        session = self.ctx.session
        now = self.ctx.clock.now()
        members = active_members(session, circle.id)

        completion = build_completion(session, circle, now)
        session.add(completion)

        circle.status = CircleStatus.COMPLETED.value
        circle.completed_at = now
        for member in members:
            member.status = MemberStatus.COMPLETED.value
        session.flush()

        defaulters = set(session.execute(
            select(MemberDefault.user_id).where(MemberDefault.circle_id == circle.id)
        ).scalars())

        bonus = self.ctx.settings.score_deltas.circle_completed
        for member in members:
            if member.user_id not in defaulters:
                self.ctx.adjust_score(
                    member.user_id, "circle_completed", bonus, circle_id=circle.id,
                )
            self.ctx.notifications.notify(member.user_id, messages.circle_completed(circle))

        self.ctx.events.record(
            CycleEventType.CIRCLE_COMPLETED,
            last,
            data={
                "completion_id": completion.id,
                "total_payout_amount": completion.total_payout_amount,
                "total_defaults": completion.total_defaults,
                "on_time_rate": completion.on_time_rate,
            },
        )
        logger.info(
            "circle_completed",
            extra={
                "total_cycles": circle.total_cycles,
                "total_defaults": completion.total_defaults,
            },
        )
        return completion


def build_completion(session, circle: Circle, completed_at) -> CircleCompletion:
    """Aggregate a circle's cycle history into its completion record."""
    cycles = list(session.execute(
        select(CircleCycle).where(CircleCycle.circle_id == circle.id)
    ).scalars())
    contributions = list(session.execute(
        select(CycleContribution).where(CycleContribution.circle_id == circle.id)
    ).scalars())
    default_count = session.execute(
        select(func.count()).select_from(MemberDefault).where(
            MemberDefault.circle_id == circle.id,
        )
    ).scalar_one()

    paid_out = [c for c in cycles if c.cycle_status == CycleStatus.CLOSED]
    collected = [c for c in contributions if c.contribution_status in COLLECTED_STATUSES]
    on_time = [c for c in contributions if c.was_on_time]
    late = [c for c in contributions if c.was_on_time is False]

    return CircleCompletion(
        circle_id=circle.id,
        completed_at=completed_at,
        total_cycles=circle.total_cycles,
        total_contribution_amount=sum((c.contributed_amount for c in collected), ZERO),
        total_contribution_count=len(collected),
        total_payout_amount=sum((c.payout_amount for c in paid_out), ZERO),
        total_payout_count=len(paid_out),
        total_defaults=default_count,
        total_late_payments=len(late),
        total_platform_fees=sum((c.platform_fee for c in paid_out), ZERO),
        on_time_rate=rate(len(on_time), len(contributions)),
        completion_rate=rate(len(collected), len(contributions)),
    )
