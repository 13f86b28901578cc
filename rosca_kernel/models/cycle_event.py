"""
Module: rosca_kernel.models.cycle_event
Responsibility: Append-only audit trail of everything that happens to a cycle.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only: rows are never updated or deleted (ORM listeners in
      db/immutability.py raise ImmutabilityViolationError).
    - Every status transition, policy decision and external effect the engine
      performs writes exactly one CycleEvent.

Audit relevance:
    Together with MemberDefault and EngineRun this is the record used to
    reconstruct why a member was penalized or a payout was delayed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from rosca_kernel.db.base import Base, UUIDString


class CycleEventType(str, Enum):
    CYCLE_STARTED = "cycle_started"
    CYCLE_START_FAILED = "cycle_start_failed"
    DEADLINE_REACHED = "deadline_reached"
    DEADLINE_PROCESSING_FAILED = "deadline_processing_failed"
    CONTRIBUTION_RECEIVED = "contribution_received"
    CONTRIBUTION_PARTIAL = "contribution_partial"
    CONTRIBUTION_FAILED = "contribution_failed"
    CONTRIBUTION_REJECTED = "contribution_rejected"
    CONTRIBUTION_EXCUSED = "contribution_excused"
    GRACE_PERIOD_STARTED = "grace_period_started"
    GRACE_PERIOD_ENDED = "grace_period_ended"
    GRACE_PROCESSING_FAILED = "grace_processing_failed"
    READY_FOR_PAYOUT = "ready_for_payout"
    PAYOUT_INITIATED = "payout_initiated"
    PAYOUT_INITIATION_FAILED = "payout_initiation_failed"
    PAYOUT_COMPLETED = "payout_completed"
    PAYOUT_FAILED = "payout_failed"
    PAYOUT_RETRIED = "payout_retried"
    PAYOUT_STUCK = "payout_stuck"
    DEFAULT_RECORDED = "default_recorded"
    RESERVE_USED = "reserve_used"
    RESERVE_PARTIAL_COVERAGE = "reserve_partial_coverage"
    CYCLE_CLOSED = "cycle_closed"
    CIRCLE_ADVANCED = "circle_advanced"
    CIRCLE_COMPLETED = "circle_completed"
    ADMIN_INTERVENTION = "admin_intervention"
    SYSTEM_ERROR = "system_error"
    WEBHOOK_RECEIVED = "webhook_received"


class CycleEvent(Base):
    """
    Immutable record of one cycle occurrence.

    Guarantees:
        - event_data holds JSON-safe values only (ids and money as strings).
        - occurred_at comes from the injected Clock.
    """

    __tablename__ = "cycle_events"

    __table_args__ = (
        Index("idx_cycle_event_cycle", "cycle_id", "occurred_at"),
        Index("idx_cycle_event_type", "event_type"),
        Index("idx_cycle_event_run", "run_id"),
    )

    cycle_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    circle_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    actor: Mapped[str] = mapped_column(String(100), nullable=False, default="system")
    run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<CycleEvent {self.event_type} cycle={self.cycle_id}>"
