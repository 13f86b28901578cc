"""
ReserveCoverageService -- backstops contribution shortfalls from a community
reserve under a fixed cap.

Responsibility:
    Given a cycle's still-unpaid contributions, decide whether the community
    reserve covers the gap in full, in part, or not at all; credit the
    contributions and debit the reserve by exactly what was covered.

Invariants enforced:
    - Debit never exceeds min(missing, cap * balance, balance).  The cap is
      rounded down to the cent.
    - Balance check and decrement are one conditional UPDATE
      (``balance >= amount``), executed after locking the reserve row.
    - covered_amount on a contribution is the part the reserve paid and is
      included in its contributed_amount.
    - One RESERVE_USED or RESERVE_PARTIAL_COVERAGE event per successful call.

Failure modes:
    - ReserveDebitConflictError: conditional UPDATE matched no row.

Partial coverage spends the whole budget.  Gaps are filled smallest first;
the last gap reached takes whatever is left and stays unresolved, so the
member is still recorded as a default for it.
"""

from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rosca_kernel.db.types import ZERO, round_money
from rosca_kernel.domain.clock import Clock
from rosca_kernel.exceptions import ReserveDebitConflictError
from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.cycle import CircleCycle, ContributionStatus, CycleContribution
from rosca_kernel.models.cycle_event import CycleEventType
from rosca_kernel.models.reserve import ReserveFund
from rosca_kernel.services.base import BaseService
from rosca_kernel.services.event_recorder import CycleEventRecorder

logger = get_logger("services.reserve")

RESERVE_COVERED_BY = "reserve"


class CoverageOutcome(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"  # No shortfall, no reserve, or nothing drawable


@dataclass(frozen=True)
class CoverageResult:
    outcome: CoverageOutcome
    missing_amount: Decimal = ZERO
    covered_amount: Decimal = ZERO
    reserve_balance_after: Decimal | None = None
    covered_user_ids: tuple[UUID, ...] = field(default_factory=tuple)
    partially_covered_user_ids: tuple[UUID, ...] = field(default_factory=tuple)

    @property
    def fully_covered(self) -> bool:
        return self.outcome == CoverageOutcome.FULL


def coverage_budget(missing: Decimal, balance: Decimal, cap: Decimal) -> Decimal:
    """The most one cycle may draw: min(missing, cap * balance, balance)."""
    if missing <= ZERO or balance <= ZERO:
        return ZERO
    cap_amount = round_money(balance * cap, rounding=ROUND_DOWN)
    return min(missing, cap_amount, balance)


def plan_partial_coverage(
    gaps: list[tuple[UUID, Decimal]], budget: Decimal,
) -> list[tuple[UUID, Decimal]]:
    """Spread ``budget`` over ``gaps``, smallest gap first.

    Returns (key, share) pairs.  Every share but the last equals its gap; the
    last may be smaller.  Pure; ties break on the id so the plan is
    deterministic.
    """
    plan: list[tuple[UUID, Decimal]] = []
    remaining = budget
    for key, gap in sorted(gaps, key=lambda g: (g[1], str(g[0]))):
        if remaining <= ZERO:
            break
        share = min(gap, remaining)
        plan.append((key, share))
        remaining -= share
    return plan


class ReserveCoverageService(BaseService):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        events: CycleEventRecorder | None = None,
        cap: Decimal = Decimal("0.20"),
    ):
        super().__init__(session, clock)
        self.events = events or CycleEventRecorder(session, self.clock)
        self.cap = cap

    def cover(
        self,
        cycle: CircleCycle,
        community_id: UUID | None,
        contributions: list[CycleContribution],
    ) -> CoverageResult:
        """Attempt to cover the outstanding part of ``contributions``."""
        gaps = {
            c.id: c.outstanding_amount
            for c in contributions
            if c.outstanding_amount > ZERO
        }
        missing = sum(gaps.values(), ZERO)
        if missing == ZERO or community_id is None:
            return CoverageResult(outcome=CoverageOutcome.NONE, missing_amount=missing)

        fund = self.session.execute(
            select(ReserveFund)
            .where(ReserveFund.community_id == community_id)
            .with_for_update()
        ).scalar_one_or_none()

        if fund is None or fund.balance <= ZERO:
            logger.info(
                "reserve_unavailable",
                extra={
                    "community_id": str(community_id),
                    "missing_amount": str(missing),
                },
            )
            return CoverageResult(outcome=CoverageOutcome.NONE, missing_amount=missing)

        balance = fund.balance
        budget = coverage_budget(missing, balance, self.cap)
        if budget <= ZERO:
            logger.info(
                "reserve_insufficient",
                extra={
                    "missing_amount": str(missing),
                    "balance": str(balance),
                },
            )
            return CoverageResult(
                outcome=CoverageOutcome.NONE,
                missing_amount=missing,
                reserve_balance_after=balance,
            )

        if budget == missing:
            shares = dict(gaps)
            outcome = CoverageOutcome.FULL
            event_type = CycleEventType.RESERVE_USED
        else:
            shares = dict(plan_partial_coverage(list(gaps.items()), budget))
            outcome = CoverageOutcome.PARTIAL
            event_type = CycleEventType.RESERVE_PARTIAL_COVERAGE

        amount = sum(shares.values(), ZERO)
        self._debit(fund, amount)

        covered: list[UUID] = []
        partial: list[UUID] = []
        for contribution in contributions:
            share = shares.get(contribution.id)
            if share is None:
                continue
            contribution.covered_amount = contribution.covered_amount + share
            contribution.contributed_amount = contribution.contributed_amount + share
            contribution.covered_by = RESERVE_COVERED_BY
            if share == gaps[contribution.id]:
                contribution.status = ContributionStatus.COVERED.value
                contribution.in_grace_period = False
                covered.append(contribution.user_id)
            else:
                partial.append(contribution.user_id)
        self.session.flush()

        result = CoverageResult(
            outcome=outcome,
            missing_amount=missing,
            covered_amount=amount,
            reserve_balance_after=fund.balance,
            covered_user_ids=tuple(covered),
            partially_covered_user_ids=tuple(partial),
        )

        self.events.record(
            event_type,
            cycle,
            data={
                "reserve_id": fund.id,
                "missing_amount": missing,
                "covered_amount": amount,
                "reserve_balance_before": balance,
                "reserve_balance_after": fund.balance,
                "covered_user_ids": covered,
                "partially_covered_user_ids": partial,
            },
        )
        logger.info(
            "reserve_coverage_applied",
            extra={
                "outcome": outcome.value,
                "missing_amount": str(missing),
                "covered_amount": str(amount),
            },
        )
        return result

    def _debit(self, fund: ReserveFund, amount: Decimal) -> None:
        result = self.session.execute(
            update(ReserveFund)
            .where(ReserveFund.id == fund.id, ReserveFund.balance >= amount)
            .values(
                balance=ReserveFund.balance - amount,
                total_covered=ReserveFund.total_covered + amount,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ReserveDebitConflictError(str(fund.id), str(amount))
        self.session.refresh(fund)
