"""
CycleResolutionService -- what happens to a cycle once its deadline passes.

Contract:
    Shared by the deadline and grace-period phases and by the contribution
    webhook.  Every method runs inside the caller's transaction (or the
    orchestrator's per-cycle SAVEPOINT) and only flushes.

Invariants enforced:
    - collected_amount is the sum of contributed_amount over completed and
      covered contributions plus any partial reserve coverage credited to
      defaulted ones; payout_amount = collected - platform_fee.
    - One MemberDefault per defaulted contribution, with exactly one
      contribution_default score delta for the member and one vouchee_default
      delta per active voucher.
    - End-grace runs at most once per cycle: it always leaves grace_period
      through a compare-and-swap transition.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from rosca_kernel.db.types import ZERO
from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.circle import Circle
from rosca_kernel.models.cycle import (
    COLLECTED_STATUSES,
    RESOLVED_STATUSES,
    STILL_PENDING_STATUSES,
    CircleCycle,
    ContributionStatus,
    CycleContribution,
    CycleStatus,
)
from rosca_kernel.models.cycle_event import CycleEventType
from rosca_kernel.models.member_default import MemberDefault

from rosca_engine import messages
from rosca_engine.context import EngineContext
from rosca_engine.domain.policy import COVER_POLICIES, split_payout
from rosca_engine.queries import active_vouchers, contributions_for

logger = get_logger("engine.resolution")


def still_pending(contributions: list[CycleContribution]) -> list[CycleContribution]:
    return [c for c in contributions if c.contribution_status in STILL_PENDING_STATUSES]


def all_resolved(contributions: list[CycleContribution]) -> bool:
    return all(c.contribution_status in RESOLVED_STATUSES for c in contributions)


class CycleResolutionService:

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx

    # -------------------------------------------------------------------------
    # Ready for payout
    # -------------------------------------------------------------------------

    def fee_percent(self, circle: Circle) -> Decimal:
        if circle.platform_fee_percent is None:
            return self.ctx.settings.default_platform_fee_percent
        return circle.platform_fee_percent

    def transition_to_ready_payout(self, cycle: CircleCycle, circle: Circle) -> CircleCycle:
        """Freeze the cycle totals and move it to ``ready_payout``."""
        contributions = contributions_for(self.ctx.session, cycle.id)
        collected_rows = [
            c for c in contributions if c.contribution_status in COLLECTED_STATUSES
        ]
        collected = sum((c.contributed_amount for c in collected_rows), ZERO)
        # Reserve money credited to a contribution that still defaulted.
        collected += sum(
            (
                c.covered_amount for c in contributions
                if c.contribution_status not in COLLECTED_STATUSES
            ),
            ZERO,
        )
        fee, payout = split_payout(collected, self.fee_percent(circle))

        self.ctx.transitions.transition(
            cycle,
            CycleStatus.READY_PAYOUT,
            collected_amount=collected,
            platform_fee=fee,
            payout_amount=payout,
            received_contributions=len(collected_rows),
        )
        self.ctx.events.record(
            CycleEventType.READY_FOR_PAYOUT,
            cycle,
            data={
                "collected_amount": collected,
                "platform_fee": fee,
                "payout_amount": payout,
                "received_contributions": len(collected_rows),
                "expected_contributions": cycle.expected_contributions,
            },
        )
        logger.info(
            "cycle_ready_for_payout",
            extra={
                "collected_amount": str(collected),
                "payout_amount": str(payout),
            },
        )
        return cycle

    # -------------------------------------------------------------------------
    # Grace period
    # -------------------------------------------------------------------------

    def open_grace_period(
        self, cycle: CircleCycle, circle: Circle, grace_days: int,
    ) -> CircleCycle:
        grace_end = self.ctx.clock.today() + timedelta(days=grace_days)
        unpaid = still_pending(contributions_for(self.ctx.session, cycle.id))

        self.ctx.transitions.transition(
            cycle, CycleStatus.GRACE_PERIOD, grace_period_end=grace_end,
        )

        deltas = self.ctx.settings.score_deltas
        for contribution in unpaid:
            contribution.status = ContributionStatus.LATE.value
            contribution.in_grace_period = True
            self.ctx.adjust_score(
                contribution.user_id,
                "contribution_late",
                deltas.contribution_late,
                cycle_id=cycle.id,
            )
            self.ctx.notifications.notify(
                contribution.user_id, messages.contribution_late(circle, cycle, grace_end),
            )
        self.ctx.session.flush()

        if cycle.recipient_user_id is not None:
            self.ctx.notifications.notify(
                cycle.recipient_user_id, messages.payout_delayed(circle, cycle, grace_end),
            )

        self.ctx.events.record(
            CycleEventType.GRACE_PERIOD_STARTED,
            cycle,
            data={
                "grace_period_end": grace_end,
                "grace_days": grace_days,
                "unpaid_user_ids": [c.user_id for c in unpaid],
            },
        )
        logger.info(
            "grace_period_started",
            extra={"grace_period_end": grace_end.isoformat(), "unpaid_count": len(unpaid)},
        )
        return cycle

    def end_grace_period(self, cycle: CircleCycle, circle: Circle) -> CircleCycle:
        """Close the grace window: optional reserve cover, defaults, ready_payout."""
        pending = still_pending(contributions_for(self.ctx.session, cycle.id))
        self.ctx.events.record(
            CycleEventType.GRACE_PERIOD_ENDED,
            cycle,
            data={"unpaid_count": len(pending), "policy": circle.policy},
        )

        if pending and circle.policy in COVER_POLICIES:
            self.ctx.reserve.cover(cycle, circle.community_id, pending)
            pending = still_pending(pending)

        self.record_defaults(cycle, circle, pending)
        return self.transition_to_ready_payout(cycle, circle)

    def proceed_immediately(
        self, cycle: CircleCycle, circle: Circle, cover: bool,
    ) -> CircleCycle:
        """Deadline-time resolution without a grace window.

        Every contribution still pending at the deadline is recorded as a
        default, including ones the reserve then covers.
        """
        pending = still_pending(contributions_for(self.ctx.session, cycle.id))
        if pending and cover:
            self.ctx.reserve.cover(cycle, circle.community_id, pending)
        self.record_defaults(cycle, circle, pending)
        return self.transition_to_ready_payout(cycle, circle)

    # -------------------------------------------------------------------------
    # Defaults
    # -------------------------------------------------------------------------

    def record_defaults(
        self,
        cycle: CircleCycle,
        circle: Circle,
        contributions: list[CycleContribution],
    ) -> int:
        """Record one MemberDefault per contribution and apply its penalties.

        Contributions the reserve covered keep their ``covered`` status; the
        rest become ``missed``.  A default is flagged ``covered_by_reserve``
        when the reserve paid any part of it.
        """
        deltas = self.ctx.settings.score_deltas
        now = self.ctx.clock.now()

        for contribution in contributions:
            if contribution.contribution_status != ContributionStatus.COVERED:
                contribution.status = ContributionStatus.MISSED.value
            covered = contribution.covered_amount > ZERO
            contribution.in_grace_period = False

            paid = contribution.member_paid_amount
            default_amount = contribution.expected_amount - paid
            record = MemberDefault(
                user_id=contribution.user_id,
                circle_id=circle.id,
                community_id=circle.community_id,
                cycle_id=cycle.id,
                contribution_id=contribution.id,
                cycle_number=cycle.cycle_number,
                expected_amount=contribution.expected_amount,
                paid_amount=paid,
                default_amount=default_amount,
                covered_by_reserve=covered,
                recorded_at=now,
            )
            self.ctx.session.add(record)
            self.ctx.session.flush()

            self.ctx.adjust_score(
                contribution.user_id,
                "contribution_default",
                deltas.contribution_default,
                cycle_id=cycle.id,
                default_id=record.id,
            )
            self.ctx.notifications.notify(
                contribution.user_id,
                messages.default_recorded(circle, cycle, default_amount),
            )

            vouchers = active_vouchers(self.ctx.session, circle.id, contribution.user_id)
            for voucher_id in vouchers:
                self.ctx.adjust_score(
                    voucher_id,
                    "vouchee_default",
                    deltas.vouchee_default,
                    cycle_id=cycle.id,
                    vouchee_id=contribution.user_id,
                )
                self.ctx.notifications.notify(
                    voucher_id, messages.vouchee_defaulted(circle, cycle),
                )

            self.ctx.events.record(
                CycleEventType.DEFAULT_RECORDED,
                cycle,
                data={
                    "default_id": record.id,
                    "user_id": contribution.user_id,
                    "default_amount": default_amount,
                    "covered_by_reserve": covered,
                    "voucher_ids": vouchers,
                },
            )
            logger.warning(
                "member_default_recorded",
                extra={
                    "user_id": str(contribution.user_id),
                    "default_amount": str(default_amount),
                    "covered_by_reserve": covered,
                    "voucher_count": len(vouchers),
                },
            )

        return len(contributions)
