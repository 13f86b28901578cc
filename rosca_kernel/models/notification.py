"""
Module: rosca_kernel.models.notification
Responsibility: Outbox tables for the engine's fire-and-forget side effects
    (member notifications, trust-score adjustments) and the scheduled
    contribution reminders.
Architecture position: Kernel > Models.  May import from db/ only.

Delivery and score computation happen outside this system; consumers read
pending outbox rows.  Writing them inside the engine's transaction means a
rolled-back cycle never leaks a notification or a penalty.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rosca_kernel.db.base import Base, TrackedBase, UUIDString


class ReminderStatus(str, Enum):
    SCHEDULED = "scheduled"
    SENT = "sent"
    SKIPPED = "skipped"  # Condition no longer held at send time
    CANCELLED = "cancelled"
    FAILED = "failed"


class ReminderCondition(str, Enum):
    IF_NOT_PAID = "if_not_paid"


class ScheduledNotification(TrackedBase):
    """A reminder to send at scheduled_for, re-checked against its condition."""

    __tablename__ = "scheduled_notifications"

    __table_args__ = (
        Index("idx_scheduled_due", "status", "scheduled_for"),
        Index("idx_scheduled_user_cycle", "user_id", "cycle_id"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    cycle_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    circle_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notification_type: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    condition_check: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReminderStatus.SCHEDULED.value,
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    cancelled_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)


class Notification(Base):
    """Outbox row for one member notification."""

    __tablename__ = "notifications"

    __table_args__ = (
        Index("idx_notification_user", "user_id", "created_at"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ScoreAdjustment(Base):
    """Outbox row for one trust-score delta."""

    __tablename__ = "score_adjustments"

    __table_args__ = (
        Index("idx_score_user_reason", "user_id", "reason"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
