"""
StartCyclesPhase -- opens collection for scheduled cycles whose start date
has arrived.

Setup preconditions (active circle, at least one active member, a final
payout order naming this cycle's recipient) raise ``CycleSetupError``
subclasses.  The orchestrator then rolls the cycle back, records
``cycle_start_failed`` and the cycle stays ``scheduled`` for the next run.
"""

from __future__ import annotations

from sqlalchemy import select

from rosca_kernel.db.types import ZERO
from rosca_kernel.exceptions import (
    CircleNotActiveError,
    NoActiveMembersError,
    PayoutOrderNotFoundError,
    RecipientNotAssignedError,
)
from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.circle import CircleStatus
from rosca_kernel.models.cycle import CircleCycle, CycleContribution, CycleStatus
from rosca_kernel.models.cycle_event import CycleEventType
from rosca_kernel.models.notification import ReminderCondition, ScheduledNotification

from rosca_engine import messages
from rosca_engine.domain.policy import reminder_schedule
from rosca_engine.phases.base import BasePhase, PhaseCounters
from rosca_engine.queries import active_members, final_payout_order

logger = get_logger("engine.starter")


class StartCyclesPhase(BasePhase):

    name = "start_cycles"
    failure_event_type = CycleEventType.CYCLE_START_FAILED

    def select_cycles(self) -> list[CircleCycle]:
        return list(
            self.ctx.session.execute(
                select(CircleCycle)
                .where(
                    CircleCycle.status == CycleStatus.SCHEDULED.value,
                    CircleCycle.start_date <= self.ctx.clock.today(),
                )
                .order_by(CircleCycle.start_date, CircleCycle.cycle_number)
            ).scalars()
        )

    def process_cycle(self, cycle: CircleCycle) -> PhaseCounters:
        session = self.ctx.session
        circle = self.circle_of(cycle)

        if circle.status != CircleStatus.ACTIVE.value:
            raise CircleNotActiveError(str(circle.id), circle.status)

        members = active_members(session, circle.id)
        if not members:
            raise NoActiveMembersError(str(circle.id))

        order = final_payout_order(session, circle.id)
        if order is None:
            raise PayoutOrderNotFoundError(str(circle.id))

        recipient_id = order.recipient_for(cycle.cycle_number)
        if recipient_id is None:
            raise RecipientNotAssignedError(str(circle.id), cycle.cycle_number)

        amount = circle.contribution_amount
        for member in members:
            session.add(CycleContribution(
                cycle_id=cycle.id,
                circle_id=circle.id,
                user_id=member.user_id,
                expected_amount=amount,
                contributed_amount=ZERO,
                due_date=cycle.contribution_deadline,
            ))
        session.flush()

        self.ctx.transitions.transition(
            cycle,
            CycleStatus.COLLECTING,
            expected_contributions=len(members),
            expected_amount=amount * len(members),
            recipient_user_id=recipient_id,
            recipient_position=order.position_of(recipient_id) or cycle.cycle_number,
        )

        if circle.current_cycle_number == cycle.cycle_number:
            circle.current_cycle_id = cycle.id

        self.ctx.events.record(
            CycleEventType.CYCLE_STARTED,
            cycle,
            data={
                "expected_contributions": len(members),
                "expected_amount": cycle.expected_amount,
                "recipient_user_id": recipient_id,
                "contribution_deadline": cycle.contribution_deadline,
            },
        )

        reminders = 0
        for member in members:
            if member.user_id == recipient_id:
                self.ctx.notifications.notify(
                    member.user_id, messages.recipient_cycle_started(circle, cycle),
                )
            else:
                self.ctx.notifications.notify(
                    member.user_id, messages.cycle_started(circle, cycle),
                )
            reminders += self._schedule_reminders(circle, cycle, member.user_id)
        session.flush()

        logger.info(
            "cycle_started",
            extra={
                "cycle_number": cycle.cycle_number,
                "member_count": len(members),
                "reminders_scheduled": reminders,
            },
        )
        return {"cycles_started": 1}

    def _schedule_reminders(self, circle, cycle: CircleCycle, user_id) -> int:
        settings = self.ctx.settings
        slots = reminder_schedule(
            cycle.contribution_deadline,
            settings.reminder_offsets_days,
            settings.reminder_hour_utc,
            self.ctx.clock.now(),
        )
        for slot in slots:
            message = messages.contribution_reminder(circle, cycle, slot.days_before)
            self.ctx.session.add(ScheduledNotification(
                user_id=user_id,
                cycle_id=cycle.id,
                circle_id=circle.id,
                notification_type=message.type,
                title=message.title,
                body=message.body,
                data={
                    "cycle_number": cycle.cycle_number,
                    "days_before": slot.days_before,
                    "priority": message.priority.value,
                },
                scheduled_for=slot.send_at,
                condition_check=ReminderCondition.IF_NOT_PAID.value,
            ))
        return len(slots)
