"""
Module: rosca_kernel.models.reserve
Responsibility: Per-community reserve fund used to backstop contribution
    shortfalls.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - balance never goes negative.  Only ReserveCoverageService mutates it,
      through a single conditional UPDATE (balance >= amount).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rosca_kernel.db.base import TrackedBase, UUIDString
from rosca_kernel.db.types import ZERO


class ReserveFund(TrackedBase):
    __tablename__ = "reserve_funds"

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_reserve_balance_non_negative"),
    )

    community_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_covered: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    def __repr__(self) -> str:
        return f"<ReserveFund community={self.community_id} balance={self.balance}>"
