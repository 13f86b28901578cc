"""
EngineHealthCheck -- read-mostly check of engine liveness and payout backlog.

Reports stuck payouts (pending longer than ``stuck_payout_hours``), cycles
in terminal ``payout_failed``, open ops alerts and minutes since the last
engine run.  A stalled engine raises one ``engine_stalled`` alert, kept
de-duplicated while it stays open.  Nothing is remediated here.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func, select

from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.cycle import CircleCycle, CycleStatus
from rosca_kernel.models.engine_run import EngineRun
from rosca_kernel.models.ops_alert import AlertSeverity

from rosca_engine.context import EngineContext
from rosca_engine.domain.types import HealthReport, HealthStatus

logger = get_logger("engine.health")

ENGINE_STALLED_ALERT = "engine_stalled"


class EngineHealthCheck:

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx

    def check(self, raise_alerts: bool = True) -> HealthReport:
        session = self.ctx.session
        settings = self.ctx.settings
        now = self.ctx.clock.now()

        stuck_cutoff = now - timedelta(hours=settings.stuck_payout_hours)
        stuck = session.execute(
            select(func.count()).select_from(CircleCycle).where(
                CircleCycle.status == CycleStatus.PAYOUT_PENDING.value,
                CircleCycle.last_payout_attempt_at < stuck_cutoff,
            )
        ).scalar_one()
        failed = session.execute(
            select(func.count()).select_from(CircleCycle).where(
                CircleCycle.status == CycleStatus.PAYOUT_FAILED.value,
            )
        ).scalar_one()

        last_started = session.execute(select(func.max(EngineRun.started_at))).scalar_one()
        if last_started is None:
            minutes_since = None
        else:
            minutes_since = int((now - last_started).total_seconds() // 60)
        stalled = minutes_since is None or minutes_since > settings.engine_stall_minutes

        issues: list[str] = []
        if stalled:
            issues.append("engine_stalled")
            if raise_alerts:
                self.ctx.alerts.raise_alert(
                    ENGINE_STALLED_ALERT,
                    details={
                        "minutes_since_last_run": minutes_since,
                        "threshold_minutes": settings.engine_stall_minutes,
                    },
                    severity=AlertSeverity.CRITICAL,
                    dedupe=True,
                )
        if stuck:
            issues.append("stuck_payouts")
        if failed:
            issues.append("failed_payouts")

        # Counted after any alert raised above.
        open_alerts = self.ctx.alerts.count_open()
        if open_alerts:
            issues.append("open_alerts")

        if stalled or stuck:
            status = HealthStatus.UNHEALTHY
        elif failed or open_alerts:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        report = HealthReport(
            status=status,
            stuck_payouts=stuck,
            failed_payouts=failed,
            open_alerts=open_alerts,
            minutes_since_last_run=minutes_since,
            engine_stalled=stalled,
            checked_at=now,
            issues=tuple(issues),
        )
        log = logger.warning if status != HealthStatus.HEALTHY else logger.info
        log(
            "engine_health_checked",
            extra={
                "health_status": status.value,
                "stuck_payouts": stuck,
                "failed_payouts": failed,
                "open_alerts": open_alerts,
                "minutes_since_last_run": minutes_since,
            },
        )
        return report
