"""
GracePeriodPhase -- re-sweeps cycles in ``grace_period`` every run.

A cycle leaves grace either because every contribution has since been
resolved, or because the grace window has expired.  Both paths count as a
grace period ended.  The compare-and-swap out of ``grace_period`` makes the
end-grace work run at most once.
"""

from __future__ import annotations

from sqlalchemy import select

from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.cycle import CircleCycle, CycleStatus
from rosca_kernel.models.cycle_event import CycleEventType

from rosca_engine.phases.base import BasePhase, PhaseCounters
from rosca_engine.queries import contributions_for
from rosca_engine.services.resolution import all_resolved

logger = get_logger("engine.grace")


class GracePeriodPhase(BasePhase):

    name = "grace_periods"
    failure_event_type = CycleEventType.GRACE_PROCESSING_FAILED

    def select_cycles(self) -> list[CircleCycle]:
        return list(
            self.ctx.session.execute(
                select(CircleCycle)
                .where(CircleCycle.status == CycleStatus.GRACE_PERIOD.value)
                .order_by(CircleCycle.grace_period_end, CircleCycle.cycle_number)
            ).scalars()
        )

    def process_cycle(self, cycle: CircleCycle) -> PhaseCounters:
        circle = self.circle_of(cycle)
        today = self.ctx.clock.today()

        if all_resolved(contributions_for(self.ctx.session, cycle.id)):
            self.ctx.events.record(
                CycleEventType.GRACE_PERIOD_ENDED,
                cycle,
                data={"unpaid_count": 0, "all_resolved": True},
            )
            self.resolution.transition_to_ready_payout(cycle, circle)
            logger.info("grace_period_resolved_early")
            return {"grace_periods_ended": 1}

        if cycle.grace_period_end is not None and today >= cycle.grace_period_end:
            self.resolution.end_grace_period(cycle, circle)
            logger.info("grace_period_expired")
            return {"grace_periods_ended": 1}

        return {}
