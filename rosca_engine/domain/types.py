"""
rosca_engine.domain.types -- Pure frozen dataclasses for the cycle engine.

ZERO I/O.  Run results, adapter request/response shapes and webhook payloads
are frozen dataclasses with enum status fields and tuples for collections.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Engine run
# =============================================================================


@dataclass(frozen=True)
class CycleFailure:
    """One cycle that failed inside a phase; the run carried on without it."""

    phase: str
    cycle_id: UUID | None
    error_code: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "cycleId": str(self.cycle_id) if self.cycle_id else None,
            "errorCode": self.error_code,
            "error": self.message,
        }


@dataclass(frozen=True)
class EngineRunResult:
    """Counters and failures of one ``CycleProgressionEngine.run()``."""

    run_id: UUID
    status: str
    cycles_started: int = 0
    deadlines_processed: int = 0
    grace_periods_started: int = 0
    grace_periods_ended: int = 0
    payouts_initiated: int = 0
    payouts_completed: int = 0
    cycles_closed: int = 0
    errors: tuple[CycleFailure, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        """External camelCase shape returned to the scheduler caller."""
        return {
            "runId": str(self.run_id),
            "status": self.status,
            "cyclesStarted": self.cycles_started,
            "deadlinesProcessed": self.deadlines_processed,
            "gracePeriodsStarted": self.grace_periods_started,
            "gracePeriodsEnded": self.grace_periods_ended,
            "payoutsInitiated": self.payouts_initiated,
            "payoutsCompleted": self.payouts_completed,
            "cyclesClosed": self.cycles_closed,
            "errors": [e.to_dict() for e in self.errors],
            "durationMs": self.duration_ms,
        }


# Counter names shared by phases, EngineRunResult and the EngineRun row.
RUN_COUNTERS: tuple[str, ...] = (
    "cycles_started",
    "deadlines_processed",
    "grace_periods_started",
    "grace_periods_ended",
    "payouts_initiated",
    "payouts_completed",
    "cycles_closed",
)


# =============================================================================
# Adapter shapes
# =============================================================================


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


@dataclass(frozen=True)
class NotificationMessage:
    type: str
    title: str
    body: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoreAdjustmentRequest:
    reason: str
    points: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PayoutRequest:
    cycle_id: UUID
    circle_id: UUID
    recipient_user_id: UUID
    amount: Decimal
    provider: str
    account_reference: str | None
    # Stable per attempt so a provider can de-duplicate resubmissions.
    idempotency_key: str


@dataclass(frozen=True)
class PayoutInitiation:
    transaction_id: str
    processor: str


class PayoutTransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PayoutStatusReport:
    transaction_id: str
    status: PayoutTransactionStatus
    amount: Decimal | None = None
    error: str | None = None


# =============================================================================
# Webhook payloads and results
# =============================================================================


class PaymentOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentWebhookPayload:
    """Contribution payment notification from the payment provider."""

    transaction_id: str
    user_id: UUID
    circle_id: UUID
    cycle_number: int
    amount: Decimal
    status: PaymentOutcome = PaymentOutcome.SUCCEEDED
    payment_method: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContributionResult:
    success: bool
    message: str
    contribution_id: UUID | None = None
    status: str | None = None
    was_on_time: bool | None = None
    days_late: int = 0
    late_fee: Decimal = Decimal("0")
    duplicate: bool = False


@dataclass(frozen=True)
class WebhookAck:
    """Result of a payout webhook; ``duplicate`` marks a replay no-op."""

    success: bool
    message: str
    status: str | None = None
    duplicate: bool = False


# =============================================================================
# Reminders and health
# =============================================================================


@dataclass(frozen=True)
class ReminderDispatchResult:
    sent: int = 0
    skipped: int = 0
    failed: int = 0


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthReport:
    status: HealthStatus
    stuck_payouts: int
    failed_payouts: int
    open_alerts: int
    minutes_since_last_run: int | None
    engine_stalled: bool
    checked_at: datetime
    issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReminderSlot:
    """A reminder that should fire ``days_before`` the deadline at ``send_at``."""

    days_before: int
    send_at: datetime
    deadline: date
