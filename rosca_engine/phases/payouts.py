"""
Payout phases.

``PayoutInitiationPhase`` attempts one initiation per run for every
``ready_payout`` cycle (moving ``payout_retry`` cycles back first).  Retries
are bounded by ``max_payout_attempts`` at a fixed interval of one engine run.

``PayoutStatusPhase`` polls the provider for ``payout_pending`` cycles and
alerts, without changing status, on payouts pending longer than
``stuck_payout_hours``.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import select

from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.cycle import CircleCycle, CycleStatus
from rosca_kernel.models.cycle_event import CycleEventType
from rosca_kernel.models.ops_alert import AlertSeverity

from rosca_engine.context import EngineContext
from rosca_engine.domain.types import PayoutTransactionStatus
from rosca_engine.phases.base import BasePhase, PhaseCounters
from rosca_engine.services.payouts import PayoutService

logger = get_logger("engine.payouts")

PAYOUT_STUCK_ALERT = "payout_stuck"


class PayoutInitiationPhase(BasePhase):

    name = "payouts"
    failure_event_type = CycleEventType.PAYOUT_INITIATION_FAILED

    def __init__(self, ctx: EngineContext):
        super().__init__(ctx)
        self.payouts = PayoutService(ctx)

    def select_cycles(self) -> list[CircleCycle]:
        if self.ctx.payments is None:
            logger.warning("payment_adapter_not_configured", extra={"phase": self.name})
            return []
        return list(
            self.ctx.session.execute(
                select(CircleCycle)
                .where(CircleCycle.status.in_([
                    CycleStatus.READY_PAYOUT.value,
                    CycleStatus.PAYOUT_RETRY.value,
                ]))
                .order_by(CircleCycle.status_changed_at, CircleCycle.cycle_number)
            ).scalars()
        )

    def process_cycle(self, cycle: CircleCycle) -> PhaseCounters:
        circle = self.circle_of(cycle)
        if cycle.cycle_status == CycleStatus.PAYOUT_RETRY:
            self.payouts.retry(cycle)

        if self.payouts.initiate(cycle, circle):
            return {"payouts_initiated": 1}
        return {}


class PayoutStatusPhase(BasePhase):

    name = "payout_status"
    failure_event_type = CycleEventType.SYSTEM_ERROR

    def __init__(self, ctx: EngineContext):
        super().__init__(ctx)
        self.payouts = PayoutService(ctx)

    def select_cycles(self) -> list[CircleCycle]:
        if self.ctx.payments is None:
            return []
        return list(
            self.ctx.session.execute(
                select(CircleCycle)
                .where(
                    CircleCycle.status == CycleStatus.PAYOUT_PENDING.value,
                    CircleCycle.payout_transaction_id.is_not(None),
                )
                .order_by(CircleCycle.last_payout_attempt_at)
            ).scalars()
        )

    def process_cycle(self, cycle: CircleCycle) -> PhaseCounters:
        circle = self.circle_of(cycle)
        report = self.ctx.payments.get_status(cycle.payout_transaction_id)

        if report.status == PayoutTransactionStatus.COMPLETED:
            self.payouts.complete(
                cycle, circle, report.transaction_id, report.amount, source="poll",
            )
            return {"payouts_completed": 1}

        if report.status == PayoutTransactionStatus.FAILED:
            self.payouts.fail(
                cycle, circle, report.error or "provider reported failure", source="poll",
            )
            return {}

        self._check_stuck(cycle)
        return {}

    def _check_stuck(self, cycle: CircleCycle) -> None:
        if cycle.last_payout_attempt_at is None:
            return
        threshold = timedelta(hours=self.ctx.settings.stuck_payout_hours)
        pending_for = self.ctx.clock.now() - cycle.last_payout_attempt_at
        if pending_for <= threshold:
            return
        if self.ctx.alerts.find_open(PAYOUT_STUCK_ALERT, cycle.id) is not None:
            return

        hours = int(pending_for.total_seconds() // 3600)
        self.ctx.alerts.raise_alert(
            PAYOUT_STUCK_ALERT,
            cycle_id=cycle.id,
            circle_id=cycle.circle_id,
            details={
                "transaction_id": cycle.payout_transaction_id,
                "pending_hours": hours,
                "last_payout_attempt_at": cycle.last_payout_attempt_at,
            },
            severity=AlertSeverity.HIGH,
            dedupe=True,
        )
        self.ctx.events.record(
            CycleEventType.PAYOUT_STUCK,
            cycle,
            data={"transaction_id": cycle.payout_transaction_id, "pending_hours": hours},
        )
