"""
Module: rosca_kernel.models.engine_run
Responsibility: One row per cycle-engine invocation, with phase counters and
    the per-cycle errors the run absorbed.
Architecture position: Kernel > Models.  May import from db/ only.

The health check reads the newest row to detect a stalled engine.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rosca_kernel.db.base import TrackedBase


class EngineRunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"  # A phase aborted the run


class EngineRun(TrackedBase):
    __tablename__ = "engine_runs"

    __table_args__ = (
        Index("idx_engine_run_started", "started_at"),
        Index("idx_engine_run_status", "status"),
    )

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=EngineRunStatus.RUNNING.value,
    )

    cycles_started: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deadlines_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    grace_periods_started: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    grace_periods_ended: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payouts_initiated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payouts_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cycles_closed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
