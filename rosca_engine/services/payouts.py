"""
PayoutService -- initiation and settlement of a cycle's pooled payout.

Contract:
    ``initiate()`` makes one attempt through the ``PaymentAdapter``.
    ``complete()`` and ``fail()`` apply a settlement outcome observed by
    polling or by a payout webhook.

Invariants enforced:
    - payout_attempts increments once per initiation attempt, never on
      settlement.
    - At ``max_payout_attempts`` failed initiations the cycle is terminal
      ``payout_failed`` with exactly one ops alert.
    - A completed payout stamps actual_payout_date from the injected clock.

Failure modes:
    - ``PayoutError`` subclasses raised while preparing the request, and any
      exception raised by the provider call, are absorbed into the attempt
      counter, never propagated.  Provider exceptions are recorded as
      ``PayoutInitiationError``.
"""

from __future__ import annotations

from decimal import Decimal

from rosca_kernel.exceptions import (
    MissingRecipientError,
    PayoutError,
    PayoutInitiationError,
)
from rosca_kernel.logging_config import get_logger
from rosca_kernel.models.circle import Circle
from rosca_kernel.models.cycle import CircleCycle, CycleStatus
from rosca_kernel.models.cycle_event import CycleEventType
from rosca_kernel.models.ops_alert import AlertSeverity

from rosca_engine import messages
from rosca_engine.context import EngineContext
from rosca_engine.domain.types import PayoutRequest
from rosca_engine.queries import primary_payment_method

logger = get_logger("engine.payouts")


class PayoutService:

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx

    # -------------------------------------------------------------------------
    # Initiation
    # -------------------------------------------------------------------------

    def retry(self, cycle: CircleCycle) -> CircleCycle:
        """Move a ``payout_retry`` cycle back to ``ready_payout``."""
        self.ctx.transitions.transition(cycle, CycleStatus.READY_PAYOUT)
        self.ctx.events.record(
            CycleEventType.PAYOUT_RETRIED,
            cycle,
            data={"payout_attempts": cycle.payout_attempts},
        )
        return cycle

    def initiate(self, cycle: CircleCycle, circle: Circle) -> bool:
        """One initiation attempt for a ``ready_payout`` cycle.

        Returns True when the provider accepted the payout.
        """
        attempt = cycle.payout_attempts + 1
        now = self.ctx.clock.now()

        try:
            request = self._build_request(cycle, attempt)
            initiation = self.ctx.payments.initiate(request)
        except PayoutError as exc:
            self._record_initiation_failure(cycle, circle, attempt, exc)
            return False
        except Exception as exc:
            # Transport and client errors from the provider use up an attempt too.
            logger.exception(
                "payout_adapter_error",
                extra={"attempt": attempt, "error_type": type(exc).__name__},
            )
            wrapped = PayoutInitiationError(f"{type(exc).__name__}: {exc}")
            self._record_initiation_failure(cycle, circle, attempt, wrapped)
            return False

        self.ctx.transitions.transition(
            cycle,
            CycleStatus.PAYOUT_PENDING,
            payout_attempts=attempt,
            payout_transaction_id=initiation.transaction_id,
            payout_processor=initiation.processor,
            last_payout_attempt_at=now,
            last_payout_error=None,
        )
        self.ctx.events.record(
            CycleEventType.PAYOUT_INITIATED,
            cycle,
            data={
                "transaction_id": initiation.transaction_id,
                "processor": initiation.processor,
                "payout_amount": cycle.payout_amount,
                "attempt": attempt,
            },
        )
        self.ctx.notifications.notify(
            cycle.recipient_user_id, messages.payout_initiated(circle, cycle),
        )
        logger.info(
            "payout_initiated",
            extra={
                "transaction_id": initiation.transaction_id,
                "attempt": attempt,
                "payout_amount": str(cycle.payout_amount),
            },
        )
        return True

    def _build_request(self, cycle: CircleCycle, attempt: int) -> PayoutRequest:
        if cycle.recipient_user_id is None:
            raise MissingRecipientError(str(cycle.id))
        method = primary_payment_method(self.ctx.session, cycle.recipient_user_id)
        return PayoutRequest(
            cycle_id=cycle.id,
            circle_id=cycle.circle_id,
            recipient_user_id=cycle.recipient_user_id,
            amount=cycle.payout_amount,
            provider=method.provider,
            account_reference=method.account_reference,
            idempotency_key=f"payout-{cycle.id}-{attempt}",
        )

    def _record_initiation_failure(
        self,
        cycle: CircleCycle,
        circle: Circle,
        attempt: int,
        exc: PayoutError,
    ) -> None:
        now = self.ctx.clock.now()
        max_attempts = self.ctx.settings.max_payout_attempts
        error = str(exc)

        self.ctx.events.record(
            CycleEventType.PAYOUT_INITIATION_FAILED,
            cycle,
            data={
                "attempt": attempt,
                "max_attempts": max_attempts,
                "error": error,
                "error_code": exc.code,
            },
        )
        logger.warning(
            "payout_initiation_failed",
            extra={"attempt": attempt, "error_code": exc.code, "error": error},
        )

        if attempt >= max_attempts:
            self.ctx.transitions.transition(
                cycle,
                CycleStatus.PAYOUT_FAILED,
                payout_attempts=attempt,
                last_payout_error=error,
                last_payout_attempt_at=now,
            )
            self._terminal_failure(cycle, circle, error, source="initiation")
        else:
            cycle.payout_attempts = attempt
            cycle.last_payout_error = error
            cycle.last_payout_attempt_at = now
            self.ctx.session.flush()

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------

    def complete(
        self,
        cycle: CircleCycle,
        circle: Circle,
        transaction_id: str,
        amount: Decimal | None = None,
        source: str = "poll",
    ) -> CircleCycle:
        self.ctx.transitions.transition(
            cycle,
            CycleStatus.PAYOUT_COMPLETED,
            actual_payout_date=self.ctx.clock.today(),
        )
        self.ctx.events.record(
            CycleEventType.PAYOUT_COMPLETED,
            cycle,
            data={
                "transaction_id": transaction_id,
                "reported_amount": amount,
                "payout_amount": cycle.payout_amount,
                "source": source,
            },
        )

        if amount is not None and amount != cycle.payout_amount:
            self.ctx.alerts.raise_alert(
                "payout_amount_mismatch",
                cycle_id=cycle.id,
                circle_id=cycle.circle_id,
                details={
                    "transaction_id": transaction_id,
                    "reported_amount": amount,
                    "payout_amount": cycle.payout_amount,
                },
                severity=AlertSeverity.MEDIUM,
            )

        recipient = cycle.recipient_user_id
        if recipient is not None:
            self.ctx.notifications.notify(recipient, messages.payout_received(circle, cycle))
            self.ctx.adjust_score(
                recipient,
                "payout_received",
                self.ctx.settings.score_deltas.payout_received,
                cycle_id=cycle.id,
            )
        logger.info(
            "payout_completed",
            extra={"transaction_id": transaction_id, "source": source},
        )
        return cycle

    def fail(
        self,
        cycle: CircleCycle,
        circle: Circle,
        error: str,
        source: str = "poll",
        allow_retry: bool = False,
    ) -> CircleCycle:
        """Apply a failed settlement of a ``payout_pending`` cycle.

        With ``allow_retry`` the cycle goes to ``payout_retry`` while attempts
        remain; otherwise (or once attempts are exhausted) it is terminal.
        """
        retrying = (
            allow_retry
            and cycle.payout_attempts < self.ctx.settings.max_payout_attempts
        )
        target = CycleStatus.PAYOUT_RETRY if retrying else CycleStatus.PAYOUT_FAILED
        self.ctx.transitions.transition(cycle, target, last_payout_error=error)

        if retrying:
            self.ctx.events.record(
                CycleEventType.PAYOUT_FAILED,
                cycle,
                data={
                    "error": error,
                    "source": source,
                    "will_retry": True,
                    "payout_attempts": cycle.payout_attempts,
                },
            )
            logger.warning(
                "payout_settlement_failed_retrying",
                extra={"error": error, "source": source},
            )
        else:
            self._terminal_failure(cycle, circle, error, source=source)
        return cycle

    def _terminal_failure(
        self, cycle: CircleCycle, circle: Circle, error: str, source: str,
    ) -> None:
        self.ctx.events.record(
            CycleEventType.PAYOUT_FAILED,
            cycle,
            data={
                "error": error,
                "source": source,
                "will_retry": False,
                "payout_attempts": cycle.payout_attempts,
            },
        )
        self.ctx.alerts.raise_alert(
            "payout_failed",
            cycle_id=cycle.id,
            circle_id=cycle.circle_id,
            details={
                "error": error,
                "source": source,
                "payout_attempts": cycle.payout_attempts,
                "payout_amount": cycle.payout_amount,
                "recipient_user_id": cycle.recipient_user_id,
            },
            severity=AlertSeverity.CRITICAL,
        )
        if cycle.recipient_user_id is not None:
            self.ctx.notifications.notify(
                cycle.recipient_user_id, messages.payout_failed(circle, cycle),
            )
