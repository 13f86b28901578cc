"""
ReminderDispatcher -- sends scheduled contribution reminders that are due.

Each reminder's condition is re-evaluated at send time: an ``if_not_paid``
reminder whose contribution is already resolved, or whose cycle no longer
accepts payments, is marked ``skipped`` instead of sent.  Each reminder is
dispatched inside its own SAVEPOINT; a sink failure marks only that
reminder ``failed``.
"""

from __future__ import annotations

from sqlalchemy import select

from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.cycle import (
    ACCEPTING_PAYMENT_STATUSES,
    RESOLVED_STATUSES,
    CircleCycle,
    CycleContribution,
)
from rosca_kernel.models.notification import (
    ReminderCondition,
    ReminderStatus,
    ScheduledNotification,
)

from rosca_engine.context import EngineContext
from rosca_engine.domain.types import (
    NotificationMessage,
    NotificationPriority,
    ReminderDispatchResult,
)

logger = get_logger("engine.reminders")


class ReminderDispatcher:

    def __init__(self, ctx: EngineContext, batch_size: int = 500):
        self.ctx = ctx
        self.batch_size = batch_size

    def dispatch_due(self) -> ReminderDispatchResult:
        session = self.ctx.session
        now = self.ctx.clock.now()
        due = list(session.execute(
            select(ScheduledNotification)
            .where(
                ScheduledNotification.status == ReminderStatus.SCHEDULED.value,
                ScheduledNotification.scheduled_for <= now,
            )
            .order_by(ScheduledNotification.scheduled_for, ScheduledNotification.id)
            .limit(self.batch_size)
        ).scalars())

        sent = skipped = failed = 0
        for reminder in due:
            reminder_id = reminder.id
            savepoint = session.begin_nested()
            try:
                if self._condition_holds(reminder):
                    self.ctx.notifications.notify(reminder.user_id, self._message(reminder))
                    reminder.status = ReminderStatus.SENT.value
                    reminder.sent_at = now
                    sent += 1
                else:
                    reminder.status = ReminderStatus.SKIPPED.value
                    skipped += 1
                session.flush()
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                logger.exception(
                    "reminder_dispatch_failed", extra={"reminder_id": str(reminder_id)},
                )
                reminder = session.get(ScheduledNotification, reminder_id)
                reminder.status = ReminderStatus.FAILED.value
                reminder.last_error = str(exc)
                session.flush()
                failed += 1

        result = ReminderDispatchResult(sent=sent, skipped=skipped, failed=failed)
        logger.info(
            "reminders_dispatched",
            extra={"sent": sent, "skipped": skipped, "failed": failed},
        )
        return result

    def _condition_holds(self, reminder: ScheduledNotification) -> bool:
        if reminder.condition_check != ReminderCondition.IF_NOT_PAID.value:
            return True
        if reminder.cycle_id is None:
            return True

        cycle = self.ctx.session.get(CircleCycle, reminder.cycle_id)
        if cycle is None or cycle.cycle_status not in ACCEPTING_PAYMENT_STATUSES:
            return False

        contribution = self.ctx.session.execute(
            select(CycleContribution).where(
                CycleContribution.cycle_id == reminder.cycle_id,
                CycleContribution.user_id == reminder.user_id,
            )
        ).scalar_one_or_none()
        if contribution is None:
            return False
        return contribution.contribution_status not in RESOLVED_STATUSES

    @staticmethod
    def _message(reminder: ScheduledNotification) -> NotificationMessage:
        data = dict(reminder.data or {})
        priority = NotificationPriority(data.pop("priority", NotificationPriority.NORMAL.value))
        data.update(cycle_id=reminder.cycle_id, circle_id=reminder.circle_id)
        return NotificationMessage(
            type=reminder.notification_type,
            title=reminder.title,
            body=reminder.body,
            priority=priority,
            data=data,
        )
