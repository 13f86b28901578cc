"""
OpsAlertService -- operator alerts for failures the engine will not fix itself.

Responsibility:
    Persists OpsAlert rows and logs each one at ERROR so log-based paging
    sees it even when nobody reads the table.

Invariants enforced:
    - With ``dedupe=True`` at most one OPEN alert exists per
      (alert_type, cycle_id); repeated detections return the open row.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from rosca_kernel.db.types import json_safe
from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.ops_alert import AlertSeverity, AlertStatus, OpsAlert
from rosca_kernel.services.base import BaseService

logger = get_logger("services.alerts")


class OpsAlertService(BaseService):

    def raise_alert(
        self,
        alert_type: str,
        *,
        cycle_id: UUID | None = None,
        circle_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        severity: AlertSeverity = AlertSeverity.HIGH,
        dedupe: bool = False,
    ) -> OpsAlert:
        if dedupe:
            existing = self.find_open(alert_type, cycle_id)
            if existing is not None:
                logger.debug(
                    "ops_alert_deduplicated",
                    extra={"alert_type": alert_type, "alert_id": str(existing.id)},
                )
                return existing

        alert = OpsAlert(
            alert_type=alert_type,
            severity=severity.value,
            cycle_id=cycle_id,
            circle_id=circle_id,
            details=json_safe(details or {}),
            status=AlertStatus.OPEN.value,
            raised_at=self.clock.now(),
        )
        self.session.add(alert)
        self.session.flush()

        logger.error(
            "ops_alert_raised",
            extra={
                "alert_type": alert_type,
                "alert_id": str(alert.id),
                "severity": severity.value,
                "alert_cycle_id": str(cycle_id) if cycle_id else None,
                "details": alert.details,
            },
        )
        return alert

    def find_open(self, alert_type: str, cycle_id: UUID | None) -> OpsAlert | None:
        stmt = select(OpsAlert).where(
            OpsAlert.alert_type == alert_type,
            OpsAlert.status == AlertStatus.OPEN.value,
        )
        if cycle_id is None:
            stmt = stmt.where(OpsAlert.cycle_id.is_(None))
        else:
            stmt = stmt.where(OpsAlert.cycle_id == cycle_id)
        return self.session.execute(stmt.limit(1)).scalar_one_or_none()

    def count_open(self) -> int:
        return self.session.execute(
            select(func.count()).select_from(OpsAlert).where(
                OpsAlert.status == AlertStatus.OPEN.value,
            )
        ).scalar_one()

    def resolve(self, alert: OpsAlert, resolved_at: datetime | None = None) -> OpsAlert:
        alert.status = AlertStatus.RESOLVED.value
        alert.resolved_at = resolved_at or self.clock.now()
        self.session.flush()
        logger.info("ops_alert_resolved", extra={"alert_id": str(alert.id)})
        return alert
