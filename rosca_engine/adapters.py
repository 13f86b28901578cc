"""
External collaborator interfaces consumed by the cycle engine.

Contract:
    ``NotificationSink`` and ``ScoreService`` are fire-and-forget.
    ``PaymentAdapter.initiate()`` raises ``PayoutInitiationError`` on any
    provider refusal; completion is observed later via ``get_status()`` or a
    payout webhook.

The bundled outbox implementations write rows in the caller's session, so a
cycle whose SAVEPOINT rolls back never leaks a notification or a score
change.  Delivery workers outside this system drain the outbox tables.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from rosca_kernel.db.types import json_safe
from rosca_kernel.domain.clock import Clock, SystemClock
from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.notification import Notification, ScoreAdjustment

from rosca_engine.domain.types import (
    NotificationMessage,
    PayoutInitiation,
    PayoutRequest,
    PayoutStatusReport,
    ScoreAdjustmentRequest,
)

logger = get_logger("engine.adapters")


@runtime_checkable
class NotificationSink(Protocol):
    def notify(self, user_id: UUID, message: NotificationMessage) -> None: ...


@runtime_checkable
class ScoreService(Protocol):
    def adjust(self, user_id: UUID, request: ScoreAdjustmentRequest) -> None: ...


@runtime_checkable
class PaymentAdapter(Protocol):
    """Moves payout money.  Never called for contributions."""

    def initiate(self, request: PayoutRequest) -> PayoutInitiation: ...

    def get_status(self, transaction_id: str) -> PayoutStatusReport: ...


class OutboxNotificationSink:
    """Persists each notification as a pending ``Notification`` row."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def notify(self, user_id: UUID, message: NotificationMessage) -> None:
        self._session.add(Notification(
            user_id=user_id,
            notification_type=message.type,
            title=message.title,
            body=message.body,
            priority=message.priority.value,
            data=json_safe(message.data),
            created_at=self._clock.now(),
        ))
        self._session.flush()
        logger.debug(
            "notification_queued",
            extra={"user_id": str(user_id), "notification_type": message.type},
        )


class OutboxScoreService:
    """Persists each score delta as a pending ``ScoreAdjustment`` row."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def adjust(self, user_id: UUID, request: ScoreAdjustmentRequest) -> None:
        self._session.add(ScoreAdjustment(
            user_id=user_id,
            reason=request.reason,
            points=request.points,
            details=json_safe(request.metadata),
            created_at=self._clock.now(),
        ))
        self._session.flush()
        logger.debug(
            "score_adjustment_queued",
            extra={
                "user_id": str(user_id),
                "reason": request.reason,
                "points": request.points,
            },
        )
