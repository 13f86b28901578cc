"""
rosca_engine -- the cycle progression engine.

Advances every circle's current cycle through collection, late-payment
handling, payout and closure.  ``CycleProgressionEngine`` is the scheduled
entry point; ``ContributionProcessor`` receives payment webhooks.
"""

from rosca_engine.adapters import (
    NotificationSink,
    OutboxNotificationSink,
    OutboxScoreService,
    PaymentAdapter,
    ScoreService,
)
from rosca_engine.context import EngineContext
from rosca_engine.domain.types import EngineRunResult
from rosca_engine.orchestrator import CycleProgressionEngine
from rosca_engine.services import (
    ContributionProcessor,
    EngineHealthCheck,
    EngineScheduler,
    ReminderDispatcher,
)

__all__ = [
    "ContributionProcessor",
    "CycleProgressionEngine",
    "EngineContext",
    "EngineHealthCheck",
    "EngineRunResult",
    "EngineScheduler",
    "NotificationSink",
    "OutboxNotificationSink",
    "OutboxScoreService",
    "PaymentAdapter",
    "ReminderDispatcher",
    "ScoreService",
]
