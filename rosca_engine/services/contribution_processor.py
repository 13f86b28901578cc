"""
ContributionProcessor -- webhook and administrator entry points.

Contract:
    Called by the payment-provider webhook layer and by operator tooling,
    one call per request, inside the caller's transaction (typically
    ``session_scope()``).  Every method only flushes.

Invariants enforced:
    - A contribution payment is applied once per provider transaction_id
      (UNIQUE contribution_payments.transaction_id); replays acknowledge.
    - A payment for an already resolved contribution is acknowledged
      without changing anything.
    - Payments are applied only while the cycle accepts them
      (collecting, deadline_reached, grace_period); later ones are rejected
      and raise an ops alert for manual refund handling.
    - A post-deadline cycle whose contributions are all resolved moves to
      ready_payout in the same call.
    - Payout webhooks are idempotent: a cycle already settled acknowledges.

Failure modes:
    - CycleNotFoundError: unknown cycle (or circle/cycle_number pair).
    - ContributionNotFoundError: the user has no contribution in the cycle.
    - ContributionNotAcceptedError: excusing a contribution of a cycle that
      no longer accepts payments.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from rosca_config.schema import EngineSettings
from rosca_kernel.db.types import ZERO
from rosca_kernel.domain.clock import Clock
from rosca_kernel.exceptions import ContributionNotAcceptedError, ContributionNotFoundError
from rosca_kernel.logging_config import LogContext, get_logger
from rosca_kernel.models.circle import Circle
from rosca_kernel.models.cycle import (
    ACCEPTING_PAYMENT_STATUSES,
    COLLECTED_STATUSES,
    RESOLVED_STATUSES,
    CircleCycle,
    ContributionPayment,
    ContributionStatus,
    CycleContribution,
    CycleStatus,
)
from rosca_kernel.models.cycle_event import CycleEventType
from rosca_kernel.models.notification import ReminderStatus, ScheduledNotification
from rosca_kernel.models.ops_alert import AlertSeverity

from rosca_engine import messages
from rosca_engine.adapters import NotificationSink, PaymentAdapter, ScoreService
from rosca_engine.context import EngineContext
from rosca_engine.domain.policy import days_late, late_fee_for
from rosca_engine.domain.types import ContributionResult, PaymentWebhookPayload, WebhookAck
from rosca_engine.queries import contributions_for, get_circle, get_cycle, get_cycle_by_number
from rosca_engine.services.payouts import PayoutService
from rosca_engine.services.resolution import CycleResolutionService, all_resolved

logger = get_logger("engine.contributions")

POST_DEADLINE_STATUSES = frozenset({
    CycleStatus.DEADLINE_REACHED,
    CycleStatus.GRACE_PERIOD,
})

SETTLED_PAYOUT_STATUSES = frozenset({
    CycleStatus.PAYOUT_COMPLETED,
    CycleStatus.CLOSED,
})


class ContributionProcessor:

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx
        self.resolution = CycleResolutionService(ctx)
        self.payouts = PayoutService(ctx)

    @classmethod
    def from_session(
        cls,
        session: Session,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        notification_sink: NotificationSink | None = None,
        score_service: ScoreService | None = None,
        payment_adapter: PaymentAdapter | None = None,
    ) -> ContributionProcessor:
        return cls(EngineContext.build(
            session,
            clock=clock,
            settings=settings,
            notifications=notification_sink,
            scores=score_service,
            payments=payment_adapter,
        ))

    # -------------------------------------------------------------------------
    # Contribution payments
    # -------------------------------------------------------------------------

    def process_contribution_received(self, payload: PaymentWebhookPayload) -> ContributionResult:
        session = self.ctx.session

        with LogContext.bind(correlation_id=payload.transaction_id):
            replay = session.execute(
                select(ContributionPayment).where(
                    ContributionPayment.transaction_id == payload.transaction_id,
                )
            ).scalar_one_or_none()
            if replay is not None:
                logger.info("contribution_payment_replayed")
                contribution = session.get(CycleContribution, replay.contribution_id)
                return ContributionResult(
                    success=True,
                    message="already_processed",
                    contribution_id=replay.contribution_id,
                    status=contribution.status if contribution is not None else None,
                    duplicate=True,
                )

            cycle = get_cycle_by_number(session, payload.circle_id, payload.cycle_number)
            circle = get_circle(session, cycle.circle_id)
            contribution = self._contribution(cycle, payload.user_id)

            with LogContext.bind(cycle_id=str(cycle.id), circle_id=str(circle.id)):
                if contribution.contribution_status in RESOLVED_STATUSES:
                    self.ctx.events.record(
                        CycleEventType.WEBHOOK_RECEIVED,
                        cycle,
                        data={
                            "transaction_id": payload.transaction_id,
                            "user_id": payload.user_id,
                            "ignored": "contribution_already_resolved",
                        },
                    )
                    logger.info("contribution_already_resolved")
                    return ContributionResult(
                        success=True,
                        message="already_completed",
                        contribution_id=contribution.id,
                        status=contribution.status,
                        was_on_time=contribution.was_on_time,
                        days_late=contribution.days_late,
                        late_fee=contribution.late_fee_amount,
                        duplicate=True,
                    )

                if cycle.cycle_status not in ACCEPTING_PAYMENT_STATUSES:
                    return self._reject(cycle, contribution, payload)

                return self._apply_payment(cycle, circle, contribution, payload)

    def _apply_payment(
        self,
        cycle: CircleCycle,
        circle: Circle,
        contribution: CycleContribution,
        payload: PaymentWebhookPayload,
    ) -> ContributionResult:
        session = self.ctx.session
        now = self.ctx.clock.now()
        late_days = days_late(contribution.due_date, self.ctx.clock.today())
        fee = late_fee_for(
            contribution.expected_amount,
            late_days,
            circle.grace_period_days,
            self.ctx.settings.late_fee_percent,
        )

        contribution.contributed_amount = contribution.contributed_amount + payload.amount
        contribution.contributed_at = now
        contribution.transaction_id = payload.transaction_id
        contribution.payment_method = payload.payment_method
        contribution.days_late = late_days
        if fee > contribution.late_fee_amount:
            contribution.late_fee_amount = fee
            contribution.late_fee_paid = False

        completed = contribution.contributed_amount >= contribution.expected_amount
        if completed:
            contribution.status = ContributionStatus.COMPLETED.value
            contribution.was_on_time = late_days == 0
            contribution.in_grace_period = False
        elif contribution.contribution_status != ContributionStatus.LATE:
            contribution.status = ContributionStatus.PARTIAL.value

        session.add(ContributionPayment(
            transaction_id=payload.transaction_id,
            contribution_id=contribution.id,
            cycle_id=cycle.id,
            user_id=contribution.user_id,
            amount=payload.amount,
            payment_method=payload.payment_method,
            received_at=now,
        ))
        session.flush()

        self._refresh_totals(cycle)
        if completed:
            self._cancel_reminders(cycle.id, contribution.user_id, "contribution_completed")

        self.ctx.events.record(
            CycleEventType.CONTRIBUTION_RECEIVED if completed else CycleEventType.CONTRIBUTION_PARTIAL,
            cycle,
            data={
                "transaction_id": payload.transaction_id,
                "user_id": contribution.user_id,
                "amount": payload.amount,
                "contributed_amount": contribution.contributed_amount,
                "days_late": late_days,
                "late_fee": fee,
            },
        )
        self.ctx.notifications.notify(
            contribution.user_id,
            messages.contribution_received(circle, cycle, payload.amount, contribution.status),
        )
        logger.info(
            "contribution_payment_applied",
            extra={
                "user_id": str(contribution.user_id),
                "amount": str(payload.amount),
                "contribution_status": contribution.status,
                "days_late": late_days,
            },
        )

        if (
            completed
            and cycle.cycle_status in POST_DEADLINE_STATUSES
            and all_resolved(contributions_for(session, cycle.id))
        ):
            self.resolution.transition_to_ready_payout(cycle, circle)

        return ContributionResult(
            success=True,
            message="contribution_completed" if completed else "contribution_partial",
            contribution_id=contribution.id,
            status=contribution.status,
            was_on_time=contribution.was_on_time,
            days_late=late_days,
            late_fee=fee,
        )

    def _reject(
        self,
        cycle: CircleCycle,
        contribution: CycleContribution,
        payload: PaymentWebhookPayload,
    ) -> ContributionResult:
        details = {
            "transaction_id": payload.transaction_id,
            "user_id": payload.user_id,
            "amount": payload.amount,
            "cycle_status": cycle.status,
        }
        self.ctx.events.record(CycleEventType.CONTRIBUTION_REJECTED, cycle, data=details)
        self.ctx.alerts.raise_alert(
            "contribution_after_close",
            cycle_id=cycle.id,
            circle_id=cycle.circle_id,
            details=details,
            severity=AlertSeverity.MEDIUM,
        )
        logger.warning("contribution_rejected", extra={"cycle_status": cycle.status})
        return ContributionResult(
            success=False,
            message="cycle_not_accepting_payments",
            contribution_id=contribution.id,
            status=contribution.status,
        )

    def process_contribution_failed(self, payload: PaymentWebhookPayload) -> ContributionResult:
        session = self.ctx.session
        cycle = get_cycle_by_number(session, payload.circle_id, payload.cycle_number)
        circle = get_circle(session, cycle.circle_id)
        contribution = self._contribution(cycle, payload.user_id)

        self.ctx.events.record(
            CycleEventType.CONTRIBUTION_FAILED,
            cycle,
            data={
                "transaction_id": payload.transaction_id,
                "user_id": payload.user_id,
                "amount": payload.amount,
                "reason": payload.failure_reason,
            },
        )
        self.ctx.notifications.notify(
            contribution.user_id,
            messages.contribution_failed(circle, cycle, payload.failure_reason),
        )
        logger.warning(
            "contribution_payment_failed",
            extra={
                "transaction_id": payload.transaction_id,
                "reason": payload.failure_reason,
            },
        )
        return ContributionResult(
            success=False,
            message="payment_failed",
            contribution_id=contribution.id,
            status=contribution.status,
        )

    def excuse_contribution(
        self,
        cycle_id: UUID,
        user_id: UUID,
        reason: str,
        admin_id: UUID,
    ) -> ContributionResult:
        """Waive a member's contribution; it then counts as resolved."""
        session = self.ctx.session
        cycle = get_cycle(session, cycle_id)
        if cycle.cycle_status not in ACCEPTING_PAYMENT_STATUSES:
            raise ContributionNotAcceptedError(str(cycle.id), cycle.status)

        circle = get_circle(session, cycle.circle_id)
        contribution = self._contribution(cycle, user_id)
        if contribution.contribution_status in RESOLVED_STATUSES:
            return ContributionResult(
                success=False,
                message="already_resolved",
                contribution_id=contribution.id,
                status=contribution.status,
            )

        contribution.status = ContributionStatus.EXCUSED.value
        contribution.excused_reason = reason
        contribution.in_grace_period = False
        session.flush()
        self._cancel_reminders(cycle.id, user_id, "contribution_excused")

        self.ctx.events.record(
            CycleEventType.CONTRIBUTION_EXCUSED,
            cycle,
            data={"user_id": user_id, "reason": reason, "admin_id": admin_id},
            actor=f"admin:{admin_id}",
        )
        logger.info(
            "contribution_excused",
            extra={"user_id": str(user_id), "admin_id": str(admin_id)},
        )

        if (
            cycle.cycle_status in POST_DEADLINE_STATUSES
            and all_resolved(contributions_for(session, cycle.id))
        ):
            self.resolution.transition_to_ready_payout(cycle, circle)

        return ContributionResult(
            success=True,
            message="contribution_excused",
            contribution_id=contribution.id,
            status=contribution.status,
        )

    # -------------------------------------------------------------------------
    # Payout settlement
    # -------------------------------------------------------------------------

    def process_payout_completed(
        self,
        cycle_id: UUID,
        transaction_id: str,
        amount: Decimal | None = None,
    ) -> WebhookAck:
        cycle = get_cycle(self.ctx.session, cycle_id)
        if cycle.cycle_status in SETTLED_PAYOUT_STATUSES:
            logger.info("payout_webhook_replayed", extra={"transaction_id": transaction_id})
            return WebhookAck(
                success=True, message="already_completed", status=cycle.status, duplicate=True,
            )

        self.ctx.events.record(
            CycleEventType.WEBHOOK_RECEIVED,
            cycle,
            data={"kind": "payout_completed", "transaction_id": transaction_id, "amount": amount},
        )

        if cycle.cycle_status != CycleStatus.PAYOUT_PENDING:
            return self._unexpected_payout_webhook(cycle, "payout_completed", transaction_id)
        if cycle.payout_transaction_id and cycle.payout_transaction_id != transaction_id:
            return self._unexpected_payout_webhook(cycle, "payout_completed", transaction_id)

        circle = get_circle(self.ctx.session, cycle.circle_id)
        self.payouts.complete(cycle, circle, transaction_id, amount, source="webhook")
        return WebhookAck(success=True, message="payout_completed", status=cycle.status)

    def process_payout_failed(self, cycle_id: UUID, error: str) -> WebhookAck:
        cycle = get_cycle(self.ctx.session, cycle_id)
        if cycle.cycle_status in (CycleStatus.PAYOUT_FAILED, CycleStatus.PAYOUT_RETRY):
            logger.info("payout_webhook_replayed", extra={"error": error})
            return WebhookAck(
                success=True, message="already_failed", status=cycle.status, duplicate=True,
            )

        self.ctx.events.record(
            CycleEventType.WEBHOOK_RECEIVED,
            cycle,
            data={"kind": "payout_failed", "error": error},
        )

        if cycle.cycle_status != CycleStatus.PAYOUT_PENDING:
            return self._unexpected_payout_webhook(cycle, "payout_failed", None)

        circle = get_circle(self.ctx.session, cycle.circle_id)
        self.payouts.fail(cycle, circle, error, source="webhook", allow_retry=True)
        return WebhookAck(success=True, message="payout_failure_recorded", status=cycle.status)

    def _unexpected_payout_webhook(
        self, cycle: CircleCycle, kind: str, transaction_id: str | None,
    ) -> WebhookAck:
        self.ctx.alerts.raise_alert(
            "unexpected_payout_webhook",
            cycle_id=cycle.id,
            circle_id=cycle.circle_id,
            details={
                "kind": kind,
                "cycle_status": cycle.status,
                "transaction_id": transaction_id,
                "expected_transaction_id": cycle.payout_transaction_id,
            },
            severity=AlertSeverity.MEDIUM,
        )
        return WebhookAck(success=False, message="unexpected_payout_webhook", status=cycle.status)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _contribution(self, cycle: CircleCycle, user_id: UUID) -> CycleContribution:
        contribution = self.ctx.session.execute(
            select(CycleContribution).where(
                CycleContribution.cycle_id == cycle.id,
                CycleContribution.user_id == user_id,
            )
        ).scalar_one_or_none()
        if contribution is None:
            raise ContributionNotFoundError(str(cycle.id), str(user_id))
        return contribution

    def _refresh_totals(self, cycle: CircleCycle) -> None:
        contributions = contributions_for(self.ctx.session, cycle.id)
        rows = [c for c in contributions if c.contribution_status in COLLECTED_STATUSES]
        cycle.collected_amount = sum((c.contributed_amount for c in rows), ZERO)
        cycle.received_contributions = len(rows)
        cycle.late_fees_collected = sum((c.late_fee_amount for c in contributions), ZERO)
        self.ctx.session.flush()

    def _cancel_reminders(self, cycle_id: UUID, user_id: UUID, reason: str) -> int:
        reminders = list(self.ctx.session.execute(
            select(ScheduledNotification).where(
                ScheduledNotification.cycle_id == cycle_id,
                ScheduledNotification.user_id == user_id,
                ScheduledNotification.status == ReminderStatus.SCHEDULED.value,
            )
        ).scalars())
        now = self.ctx.clock.now()
        for reminder in reminders:
            reminder.status = ReminderStatus.CANCELLED.value
            reminder.cancelled_at = now
            reminder.cancelled_reason = reason
        self.ctx.session.flush()
        return len(reminders)
