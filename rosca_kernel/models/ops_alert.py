"""
Module: rosca_kernel.models.ops_alert
Responsibility: Operator-facing alerts raised by the engine, webhook handlers
    and health check.  Integrity anomalies are surfaced here and never
    auto-remediated.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from rosca_kernel.db.base import TrackedBase, UUIDString


class AlertStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class OpsAlert(TrackedBase):
    __tablename__ = "ops_alerts"

    __table_args__ = (
        Index("idx_alert_open", "alert_type", "cycle_id", "status"),
    )

    alert_type: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AlertSeverity.HIGH.value,
    )
    cycle_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    circle_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AlertStatus.OPEN.value,
    )
    raised_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
