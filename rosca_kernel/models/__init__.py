"""Domain models for the rotating-savings cycle engine."""

from rosca_kernel.models.circle import (
    Circle,
    CircleMember,
    CircleStatus,
    IncompleteContributionPolicy,
    MemberStatus,
    PaymentMethod,
    PaymentMethodStatus,
    PayoutOrder,
    Vouch,
    VouchStatus,
)
from rosca_kernel.models.cycle import (
    ACCEPTING_PAYMENT_STATUSES,
    COLLECTED_STATUSES,
    RESOLVED_STATUSES,
    STILL_PENDING_STATUSES,
    VALID_TRANSITIONS,
    CircleCycle,
    ContributionPayment,
    ContributionStatus,
    CycleContribution,
    CycleStatus,
    validate_transition,
)
from rosca_kernel.models.cycle_event import CycleEvent, CycleEventType
from rosca_kernel.models.engine_run import EngineRun, EngineRunStatus
from rosca_kernel.models.member_default import CircleCompletion, MemberDefault
from rosca_kernel.models.notification import (
    Notification,
    ReminderCondition,
    ReminderStatus,
    ScheduledNotification,
    ScoreAdjustment,
)
from rosca_kernel.models.ops_alert import AlertSeverity, AlertStatus, OpsAlert
from rosca_kernel.models.reserve import ReserveFund
