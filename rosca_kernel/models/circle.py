"""
Module: rosca_kernel.models.circle
Responsibility: Circle configuration and membership records the engine reads
    while progressing cycles: the circle itself, its members, the finalized
    payout order, vouches between members, and members' payout methods.
Architecture position: Kernel > Models.  May import from db/ only.

The engine reads these rows and only ever writes the circle's cycle pointer,
the circle status on completion, and membership status on completion.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rosca_kernel.db.base import TrackedBase, UUIDString


class CircleStatus(str, Enum):
    FORMING = "forming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    REMOVED = "removed"


class IncompleteContributionPolicy(str, Enum):
    """What a circle does when its contribution deadline passes unpaid."""

    STRICT_WAIT = "strict_wait"  # Long grace (capped), then proceed
    GRACE_THEN_PROCEED = "grace_then_proceed"
    GRACE_THEN_COVER = "grace_then_cover"  # Reserve backstop at grace expiry
    IMMEDIATE_PROCEED = "immediate_proceed"
    IMMEDIATE_COVER = "immediate_cover"  # Reserve backstop at deadline


class VouchStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"


class PaymentMethodStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Circle(TrackedBase):
    """
    A savings circle rotating one pooled payout per cycle.

    Guarantees:
        - current_cycle_number / current_cycle_id point at the cycle the
          circle is working through; the closer advances them.
        - platform_fee_percent is a fraction (0.02 means 2%).
    """

    __tablename__ = "circles"

    __table_args__ = (
        Index("idx_circle_status", "status"),
        Index("idx_circle_community", "community_id"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    community_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    contribution_amount: Mapped[Decimal] = mapped_column(nullable=False)

    total_cycles: Mapped[int] = mapped_column(Integer, nullable=False)

    incomplete_contribution_policy: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=IncompleteContributionPolicy.GRACE_THEN_PROCEED.value,
    )

    grace_period_days: Mapped[int] = mapped_column(Integer, nullable=False, default=2)

    platform_fee_percent: Mapped[Decimal] = mapped_column(
        Numeric(12, 6), nullable=False, default=Decimal("0.02"),
    )

    current_cycle_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    current_cycle_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=CircleStatus.ACTIVE.value,
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    @property
    def policy(self) -> IncompleteContributionPolicy:
        return IncompleteContributionPolicy(self.incomplete_contribution_policy)

    def __repr__(self) -> str:
        return f"<Circle {self.name} cycle={self.current_cycle_number}/{self.total_cycles}>"


class CircleMember(TrackedBase):
    __tablename__ = "circle_members"

    __table_args__ = (
        UniqueConstraint("circle_id", "user_id", name="uq_circle_member"),
        Index("idx_member_user", "user_id"),
    )

    circle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("circles.id"), nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=MemberStatus.ACTIVE.value,
    )


class PayoutOrder(TrackedBase):
    """
    Predetermined recipient sequence for a circle.

    order_data is a JSON list of ``{"position": int, "user_id": str}``;
    position N receives the payout of cycle N.
    """

    __tablename__ = "payout_orders"

    circle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("circles.id"), nullable=False,
    )
    is_final: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    order_data: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    def recipient_for(self, position: int) -> UUID | None:
        for entry in self.order_data or []:
            if int(entry["position"]) == position:
                return UUID(str(entry["user_id"]))
        return None

    def position_of(self, user_id: UUID) -> int | None:
        for entry in self.order_data or []:
            if str(entry["user_id"]) == str(user_id):
                return int(entry["position"])
        return None


class Vouch(TrackedBase):
    """A member (voucher) standing behind another member (vouchee) in a circle."""

    __tablename__ = "vouches"

    __table_args__ = (
        Index("idx_vouch_vouchee", "vouchee_id", "circle_id"),
    )

    voucher_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    vouchee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    circle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("circles.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=VouchStatus.ACTIVE.value,
    )


class PaymentMethod(TrackedBase):
    """A member's registered payout destination."""

    __tablename__ = "payment_methods"

    __table_args__ = (
        Index("idx_payment_method_user", "user_id", "is_primary", "status"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    account_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=PaymentMethodStatus.ACTIVE.value,
    )
