"""
Module: rosca_kernel.models.member_default
Responsibility: Write-once records of contribution defaults and of circle
    completion statistics.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - MemberDefault and CircleCompletion rows are never updated or deleted
      (ORM listeners in db/immutability.py).
    - default_amount == expected_amount - paid_amount at recording time.
    - One CircleCompletion per circle (UNIQUE circle_id).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from rosca_kernel.db.base import Base, UUIDString


class MemberDefault(Base):
    """
    Immutable snapshot of a member failing to pay a cycle contribution.

    paid_amount is what the member paid; reserve coverage is tracked on the
    contribution row and flagged here with covered_by_reserve.
    """

    __tablename__ = "member_defaults"

    __table_args__ = (
        Index("idx_default_user", "user_id"),
        Index("idx_default_cycle", "cycle_id"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    circle_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    community_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cycle_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    contribution_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    cycle_number: Mapped[int] = mapped_column(Integer, nullable=False)

    expected_amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False)
    default_amount: Mapped[Decimal] = mapped_column(nullable=False)
    covered_by_reserve: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(String(50), nullable=False, default="unresolved")
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CircleCompletion(Base):
    """Aggregate statistics captured when a circle finishes its last cycle."""

    __tablename__ = "circle_completions"

    circle_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    total_cycles: Mapped[int] = mapped_column(Integer, nullable=False)
    total_contribution_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_contribution_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_payout_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_payout_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_defaults: Mapped[int] = mapped_column(Integer, nullable=False)
    total_late_payments: Mapped[int] = mapped_column(Integer, nullable=False)
    total_platform_fees: Mapped[Decimal] = mapped_column(nullable=False)

    # Fractions in [0, 1]
    on_time_rate: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False)
    completion_rate: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False)
