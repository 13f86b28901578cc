"""
Shared test doubles and query helpers for the cycle engine tests.

Kept out of conftest.py so test modules can import them directly.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rosca_kernel.exceptions import PayoutInitiationError
from rosca_kernel.models import (
    Circle,
    CircleCycle,
    CycleContribution,
    CycleEvent,
    MemberDefault,
    Notification,
    OpsAlert,
    ReserveFund,
    ScoreAdjustment,
)

from rosca_engine.domain.types import (
    PayoutInitiation,
    PayoutRequest,
    PayoutStatusReport,
    PayoutTransactionStatus,
)

START = datetime(2026, 2, 1, 12, 0, 0)


# =============================================================================
# Fake payment adapter
# =============================================================================


class FakePaymentAdapter:
    """Scripted PaymentAdapter.

    ``fail_next(n)`` makes the next ``n`` initiations raise
    ``PayoutInitiationError``; ``settle(txn, status)`` sets what
    ``get_status`` reports for a transaction (pending by default).
    Transaction ids are ``txn-1``, ``txn-2``... in request order.
    """

    def __init__(self):
        self.requests: list[PayoutRequest] = []
        self.status_calls: list[str] = []
        self._failures_left = 0
        self._failure_reason = "provider unavailable"
        self._statuses: dict[str, PayoutStatusReport] = {}

    def fail_next(self, count: int, reason: str = "provider unavailable") -> None:
        self._failures_left = count
        self._failure_reason = reason

    def settle(
        self,
        transaction_id: str,
        status: PayoutTransactionStatus,
        amount: Decimal | None = None,
        error: str | None = None,
    ) -> None:
        self._statuses[transaction_id] = PayoutStatusReport(
            transaction_id=transaction_id, status=status, amount=amount, error=error,
        )

    def initiate(self, request: PayoutRequest) -> PayoutInitiation:
        self.requests.append(request)
        if self._failures_left > 0:
            self._failures_left -= 1
            raise PayoutInitiationError(self._failure_reason, provider="fake")
        return PayoutInitiation(transaction_id=f"txn-{len(self.requests)}", processor="fake")

    def get_status(self, transaction_id: str) -> PayoutStatusReport:
        self.status_calls.append(transaction_id)
        return self._statuses.get(
            transaction_id,
            PayoutStatusReport(
                transaction_id=transaction_id, status=PayoutTransactionStatus.PENDING,
            ),
        )


class RecordingNotificationSink:
    def __init__(self, fail_for: set[UUID] | None = None):
        self.sent: list[tuple[UUID, object]] = []
        self._fail_for = fail_for or set()

    def notify(self, user_id, message) -> None:
        if user_id in self._fail_for:
            raise RuntimeError("push gateway down")
        self.sent.append((user_id, message))


# =============================================================================
# Circle setup handle
# =============================================================================


@dataclass
class CircleSetup:
    circle: Circle
    member_ids: list[UUID]
    cycles: dict[int, CircleCycle] = field(default_factory=dict)

    def cycle(self, number: int = 1) -> CircleCycle:
        return self.cycles[number]

    def recipient(self, number: int = 1) -> UUID:
        return self.member_ids[number - 1]

    def contributors(self, number: int = 1) -> list[UUID]:
        """Members other than the cycle's recipient."""
        recipient = self.recipient(number)
        return [m for m in self.member_ids if m != recipient]


# =============================================================================
# Query helpers
# =============================================================================


def event_types(session: Session, cycle_id: UUID) -> list[str]:
    return list(session.execute(
        select(CycleEvent.event_type).where(CycleEvent.cycle_id == cycle_id)
    ).scalars())


def contribution_of(session: Session, cycle_id: UUID, user_id: UUID) -> CycleContribution:
    return session.execute(
        select(CycleContribution).where(
            CycleContribution.cycle_id == cycle_id,
            CycleContribution.user_id == user_id,
        )
    ).scalar_one()


def score_points(session: Session, user_id: UUID, reason: str | None = None) -> list[int]:
    stmt = select(ScoreAdjustment.points).where(ScoreAdjustment.user_id == user_id)
    if reason is not None:
        stmt = stmt.where(ScoreAdjustment.reason == reason)
    return list(session.execute(stmt).scalars())


def notification_types(session: Session, user_id: UUID) -> list[str]:
    return list(session.execute(
        select(Notification.notification_type).where(Notification.user_id == user_id)
    ).scalars())


def alerts_of_type(session: Session, alert_type: str) -> list[OpsAlert]:
    return list(session.execute(
        select(OpsAlert).where(OpsAlert.alert_type == alert_type)
    ).scalars())


def defaults_for(session: Session, cycle_id: UUID) -> list[MemberDefault]:
    return list(session.execute(
        select(MemberDefault).where(MemberDefault.cycle_id == cycle_id)
    ).scalars())


def count_rows(session: Session, model, *criteria) -> int:
    return session.execute(
        select(func.count()).select_from(model).where(*criteria)
    ).scalar_one()


def reserve_balance(session: Session, community_id: UUID) -> Decimal:
    return session.execute(
        select(ReserveFund.balance).where(ReserveFund.community_id == community_id)
    ).scalar_one()
