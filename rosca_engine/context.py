"""
EngineContext -- the injected handles every engine component works through.

One context is built per engine run or webhook call.  It holds the session,
the clock, settings, kernel services and external adapters; it owns no
state of its own and is never cached between invocations.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from rosca_config.schema import EngineSettings
from rosca_kernel.domain.clock import Clock, SystemClock
from rosca_kernel.services.cycle_transitions import CycleTransitionService
from rosca_kernel.services.event_recorder import CycleEventRecorder
from rosca_kernel.services.ops_alerts import OpsAlertService
from rosca_kernel.services.reserve_coverage import ReserveCoverageService

from rosca_engine.adapters import (
    NotificationSink,
    OutboxNotificationSink,
    OutboxScoreService,
    PaymentAdapter,
    ScoreService,
)
from rosca_engine.domain.types import ScoreAdjustmentRequest


@dataclass
class EngineContext:
    session: Session
    clock: Clock
    settings: EngineSettings
    events: CycleEventRecorder
    alerts: OpsAlertService
    transitions: CycleTransitionService
    reserve: ReserveCoverageService
    notifications: NotificationSink
    scores: ScoreService
    payments: PaymentAdapter | None = None
    run_id: UUID | None = None

    @classmethod
    def build(
        cls,
        session: Session,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        notifications: NotificationSink | None = None,
        scores: ScoreService | None = None,
        payments: PaymentAdapter | None = None,
        run_id: UUID | None = None,
    ) -> EngineContext:
        """Wire kernel services around one session and clock.

        Missing notification and score adapters default to the outbox
        implementations.
        """
        clock = clock or SystemClock()
        settings = settings or EngineSettings()
        events = CycleEventRecorder(session, clock, run_id=run_id)
        return cls(
            session=session,
            clock=clock,
            settings=settings,
            events=events,
            alerts=OpsAlertService(session, clock),
            transitions=CycleTransitionService(session, clock),
            reserve=ReserveCoverageService(
                session, clock, events=events, cap=settings.reserve_coverage_cap,
            ),
            notifications=notifications or OutboxNotificationSink(session, clock),
            scores=scores or OutboxScoreService(session, clock),
            payments=payments,
            run_id=run_id,
        )

    def adjust_score(self, user_id: UUID, reason: str, points: int, **metadata: object) -> None:
        self.scores.adjust(
            user_id,
            ScoreAdjustmentRequest(reason=reason, points=points, metadata=dict(metadata)),
        )
