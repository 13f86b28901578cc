"""Pure domain layer of the cycle engine (DTOs and money/calendar rules)."""

from rosca_engine.domain.types import (
    RUN_COUNTERS,
    ContributionResult,
    CycleFailure,
    EngineRunResult,
    HealthReport,
    HealthStatus,
    NotificationMessage,
    NotificationPriority,
    PaymentOutcome,
    PaymentWebhookPayload,
    PayoutInitiation,
    PayoutRequest,
    PayoutStatusReport,
    PayoutTransactionStatus,
    ReminderDispatchResult,
    ReminderSlot,
    ScoreAdjustmentRequest,
    WebhookAck,
)

__all__ = [
    "RUN_COUNTERS",
    "ContributionResult",
    "CycleFailure",
    "EngineRunResult",
    "HealthReport",
    "HealthStatus",
    "NotificationMessage",
    "NotificationPriority",
    "PaymentOutcome",
    "PaymentWebhookPayload",
    "PayoutInitiation",
    "PayoutRequest",
    "PayoutStatusReport",
    "PayoutTransactionStatus",
    "ReminderDispatchResult",
    "ReminderSlot",
    "ScoreAdjustmentRequest",
    "WebhookAck",
]
