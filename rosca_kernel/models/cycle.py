"""
Module: rosca_kernel.models.cycle
Responsibility: ORM persistence for circle cycles, the per-member contribution
    rows inside them, and the processed-payment ledger that makes contribution
    webhooks idempotent.
Architecture position: Kernel > Models.  May import from db/ and exceptions.

Invariants enforced:
    - At most one CircleCycle per (circle_id, cycle_number)
      (uq_cycle_circle_number).
    - At most one CycleContribution per (cycle_id, user_id).
    - A processed payment transaction is applied once
      (UNIQUE contribution_payments.transaction_id).
    - Cycle status moves only along VALID_TRANSITIONS.  The single backward
      edge is payout_retry -> ready_payout.

Failure modes:
    - IntegrityError on duplicate (circle_id, cycle_number) or duplicate
      transaction_id.
    - InvalidCycleTransitionError from validate_transition().
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rosca_kernel.db.base import Base, TrackedBase, UUIDString
from rosca_kernel.db.types import ZERO
from rosca_kernel.exceptions import InvalidCycleTransitionError


class CycleStatus(str, Enum):
    """
    Cycle lifecycle status.

    State machine:
        SCHEDULED -> COLLECTING | SKIPPED | CANCELLED
        COLLECTING -> DEADLINE_REACHED | CANCELLED
        DEADLINE_REACHED -> GRACE_PERIOD | READY_PAYOUT
        GRACE_PERIOD -> READY_PAYOUT
        READY_PAYOUT -> PAYOUT_PENDING | PAYOUT_FAILED
        PAYOUT_PENDING -> PAYOUT_COMPLETED | PAYOUT_FAILED | PAYOUT_RETRY
        PAYOUT_RETRY -> READY_PAYOUT
        PAYOUT_COMPLETED -> CLOSED
        CLOSED, PAYOUT_FAILED, SKIPPED, CANCELLED: terminal
    """

    SCHEDULED = "scheduled"
    COLLECTING = "collecting"
    DEADLINE_REACHED = "deadline_reached"
    GRACE_PERIOD = "grace_period"
    READY_PAYOUT = "ready_payout"
    PAYOUT_PENDING = "payout_pending"
    PAYOUT_COMPLETED = "payout_completed"
    PAYOUT_FAILED = "payout_failed"
    PAYOUT_RETRY = "payout_retry"
    CLOSED = "closed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


VALID_TRANSITIONS: dict[CycleStatus, frozenset[CycleStatus]] = {
    CycleStatus.SCHEDULED: frozenset({
        CycleStatus.COLLECTING, CycleStatus.SKIPPED, CycleStatus.CANCELLED,
    }),
    CycleStatus.COLLECTING: frozenset({
        CycleStatus.DEADLINE_REACHED, CycleStatus.CANCELLED,
    }),
    CycleStatus.DEADLINE_REACHED: frozenset({
        CycleStatus.GRACE_PERIOD, CycleStatus.READY_PAYOUT,
    }),
    CycleStatus.GRACE_PERIOD: frozenset({CycleStatus.READY_PAYOUT}),
    CycleStatus.READY_PAYOUT: frozenset({
        CycleStatus.PAYOUT_PENDING, CycleStatus.PAYOUT_FAILED,
    }),
    CycleStatus.PAYOUT_PENDING: frozenset({
        CycleStatus.PAYOUT_COMPLETED,
        CycleStatus.PAYOUT_FAILED,
        CycleStatus.PAYOUT_RETRY,
    }),
    CycleStatus.PAYOUT_RETRY: frozenset({CycleStatus.READY_PAYOUT}),
    CycleStatus.PAYOUT_COMPLETED: frozenset({CycleStatus.CLOSED}),
    # Terminal states
    CycleStatus.CLOSED: frozenset(),
    CycleStatus.PAYOUT_FAILED: frozenset(),
    CycleStatus.SKIPPED: frozenset(),
    CycleStatus.CANCELLED: frozenset(),
}

# Statuses in which a contribution payment is still applied to the cycle.
ACCEPTING_PAYMENT_STATUSES: frozenset[CycleStatus] = frozenset({
    CycleStatus.COLLECTING,
    CycleStatus.DEADLINE_REACHED,
    CycleStatus.GRACE_PERIOD,
})


def validate_transition(
    cycle_id: object, from_status: CycleStatus, to_status: CycleStatus,
) -> None:
    if to_status not in VALID_TRANSITIONS[from_status]:
        raise InvalidCycleTransitionError(
            str(cycle_id), from_status.value, to_status.value,
        )


class ContributionStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    LATE = "late"  # Unpaid past the deadline, inside a grace window
    MISSED = "missed"  # Default recorded
    EXCUSED = "excused"  # Waived by an administrator
    COVERED = "covered"  # Gap paid from the community reserve


# Owed money is still outstanding.
STILL_PENDING_STATUSES: frozenset[ContributionStatus] = frozenset({
    ContributionStatus.PENDING,
    ContributionStatus.PARTIAL,
    ContributionStatus.LATE,
})

# Nothing further is expected from the member for this cycle.
RESOLVED_STATUSES: frozenset[ContributionStatus] = frozenset({
    ContributionStatus.COMPLETED,
    ContributionStatus.COVERED,
    ContributionStatus.EXCUSED,
})

# Contributions whose contributed_amount counts toward collected_amount.
COLLECTED_STATUSES: frozenset[ContributionStatus] = frozenset({
    ContributionStatus.COMPLETED,
    ContributionStatus.COVERED,
})


class CircleCycle(TrackedBase):
    """
    One collection-then-payout iteration of a circle.

    Guarantees:
        - UNIQUE (circle_id, cycle_number).
        - Money columns are never NULL; they start at zero.
        - status changes only through the kernel transition helper, which
          validates the edge and compare-and-swaps on the observed status.
    """

    __tablename__ = "circle_cycles"

    __table_args__ = (
        UniqueConstraint("circle_id", "cycle_number", name="uq_cycle_circle_number"),
        Index("idx_cycle_status", "status"),
        Index("idx_cycle_status_deadline", "status", "contribution_deadline"),
    )

    circle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("circles.id"), nullable=False,
    )
    cycle_number: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=CycleStatus.SCHEDULED.value,
    )
    status_changed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    # Schedule
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    contribution_deadline: Mapped[date] = mapped_column(Date, nullable=False)
    grace_period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    expected_payout_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_payout_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Amounts
    expected_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    collected_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    payout_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    platform_fee: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    # Sum of late fees assessed on this cycle's contributions
    late_fees_collected: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # Recipient
    recipient_user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    recipient_position: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Counts
    expected_contributions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    received_contributions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Payout tracking
    payout_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_payout_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_payout_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    payout_transaction_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payout_processor: Mapped[str | None] = mapped_column(String(50), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def cycle_status(self) -> CycleStatus:
        return CycleStatus(self.status)

    def __repr__(self) -> str:
        return f"<CircleCycle {self.circle_id}#{self.cycle_number} {self.status}>"


class CycleContribution(TrackedBase):
    """
    A member's required payment into one cycle.

    Guarantees:
        - contributed_amount never decreases.
        - status == completed implies contributed_amount >= expected_amount.
        - covered_amount is the part paid by the reserve and is included in
          contributed_amount.  A row the reserve only partly paid is not
          covered and ends missed.
    """

    __tablename__ = "cycle_contributions"

    __table_args__ = (
        UniqueConstraint("cycle_id", "user_id", name="uq_contribution_cycle_user"),
        Index("idx_contribution_status", "cycle_id", "status"),
    )

    cycle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("circle_cycles.id"), nullable=False,
    )
    circle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("circles.id"), nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    expected_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    contributed_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    contributed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ContributionStatus.PENDING.value,
    )
    was_on_time: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    days_late: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    late_fee_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    late_fee_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    transaction_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    in_grace_period: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    covered_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    covered_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    excused_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def contribution_status(self) -> ContributionStatus:
        return ContributionStatus(self.status)

    @property
    def outstanding_amount(self) -> Decimal:
        gap = self.expected_amount - self.contributed_amount
        return gap if gap > ZERO else ZERO

    @property
    def member_paid_amount(self) -> Decimal:
        """What the member actually paid, excluding reserve coverage."""
        return self.contributed_amount - self.covered_amount


class ContributionPayment(Base):
    """
    One processed contribution payment.

    Append-only.  The UNIQUE transaction_id turns webhook replays into
    acknowledgments instead of double credits.
    """

    __tablename__ = "contribution_payments"

    __table_args__ = (
        Index("idx_payment_contribution", "contribution_id"),
    )

    transaction_id: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    contribution_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("cycle_contributions.id"), nullable=False,
    )
    cycle_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
