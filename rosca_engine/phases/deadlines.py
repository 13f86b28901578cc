"""
DeadlinePhase -- moves collecting cycles past their deadline and dispatches
the circle's incomplete-contribution policy.

Invariants enforced:
    - Every IncompleteContributionPolicy has exactly one handler; a missing
      handler fails construction with ``UnhandledPolicyError``.
    - A fully resolved cycle goes collecting -> deadline_reached ->
      ready_payout in the same sweep, whatever its policy.
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy import select

from rosca_kernel.exceptions import UnhandledPolicyError
from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.circle import Circle, IncompleteContributionPolicy
from rosca_kernel.models.cycle import CircleCycle, CycleStatus
from rosca_kernel.models.cycle_event import CycleEventType

from rosca_engine.context import EngineContext
from rosca_engine.domain.policy import grace_days_for
from rosca_engine.phases.base import BasePhase, PhaseCounters
from rosca_engine.queries import contributions_for
from rosca_engine.services.resolution import all_resolved, still_pending

logger = get_logger("engine.deadlines")

PolicyHandler = Callable[[CircleCycle, Circle], PhaseCounters]


class DeadlinePhase(BasePhase):

    name = "deadlines"
    failure_event_type = CycleEventType.DEADLINE_PROCESSING_FAILED

    def __init__(self, ctx: EngineContext):
        super().__init__(ctx)
        self._handlers: dict[IncompleteContributionPolicy, PolicyHandler] = {
            IncompleteContributionPolicy.STRICT_WAIT: self._open_grace,
            IncompleteContributionPolicy.GRACE_THEN_PROCEED: self._open_grace,
            IncompleteContributionPolicy.GRACE_THEN_COVER: self._open_grace,
            IncompleteContributionPolicy.IMMEDIATE_PROCEED: self._proceed,
            IncompleteContributionPolicy.IMMEDIATE_COVER: self._cover_and_proceed,
        }
        check_policy_handlers(self._handlers)

    def select_cycles(self) -> list[CircleCycle]:
        return list(
            self.ctx.session.execute(
                select(CircleCycle)
                .where(
                    CircleCycle.status == CycleStatus.COLLECTING.value,
                    CircleCycle.contribution_deadline < self.ctx.clock.today(),
                )
                .order_by(CircleCycle.contribution_deadline, CircleCycle.cycle_number)
            ).scalars()
        )

    def process_cycle(self, cycle: CircleCycle) -> PhaseCounters:
        circle = self.circle_of(cycle)
        contributions = contributions_for(self.ctx.session, cycle.id)
        unpaid = still_pending(contributions)

        self.ctx.transitions.transition(cycle, CycleStatus.DEADLINE_REACHED)
        self.ctx.events.record(
            CycleEventType.DEADLINE_REACHED,
            cycle,
            data={
                "expected_contributions": len(contributions),
                "unpaid_contributions": len(unpaid),
                "policy": circle.policy,
            },
        )
        logger.info(
            "deadline_reached",
            extra={"unpaid_count": len(unpaid), "policy": circle.policy.value},
        )

        counters: PhaseCounters = {"deadlines_processed": 1}
        if all_resolved(contributions):
            self.resolution.transition_to_ready_payout(cycle, circle)
            return counters

        counters.update(self._handlers[circle.policy](cycle, circle))
        return counters

    # -------------------------------------------------------------------------
    # Policy handlers
    # -------------------------------------------------------------------------

    def _open_grace(self, cycle: CircleCycle, circle: Circle) -> PhaseCounters:
        grace_days = grace_days_for(
            circle.policy,
            self._circle_grace_days(circle),
            self.ctx.settings.strict_wait_max_grace_days,
        )
        self.resolution.open_grace_period(cycle, circle, grace_days)
        return {"grace_periods_started": 1}

    def _proceed(self, cycle: CircleCycle, circle: Circle) -> PhaseCounters:
        self.resolution.proceed_immediately(cycle, circle, cover=False)
        return {}

    def _cover_and_proceed(self, cycle: CircleCycle, circle: Circle) -> PhaseCounters:
        self.resolution.proceed_immediately(cycle, circle, cover=True)
        return {}

    def _circle_grace_days(self, circle: Circle) -> int:
        if circle.grace_period_days is None:
            return self.ctx.settings.default_grace_period_days
        return circle.grace_period_days


def check_policy_handlers(handlers: dict[IncompleteContributionPolicy, object]) -> None:
    missing = [p.value for p in IncompleteContributionPolicy if p not in handlers]
    if missing:
        raise UnhandledPolicyError(missing)
