"""
Tests for payout initiation, bounded retry, polling and stuck detection.

Every test reaches ``ready_payout`` the same way: a fully paid five-member
cycle whose deadline passed, processed on 2026-02-09 12:00.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from rosca_kernel.models import (
    AlertSeverity,
    CycleEvent,
    CycleEventType,
    CycleStatus,
    PaymentMethod,
    PaymentMethodStatus,
)

from rosca_engine.domain.types import PayoutTransactionStatus

from tests.support import alerts_of_type, event_types, notification_types, score_points


@pytest.fixture
def paid_circle(started_circle, pay, clock):
    def _make(**kwargs):
        setup = started_circle(members=5, **kwargs)
        for user_id in setup.member_ids:
            pay(setup, user_id)
        clock.advance_days(8)
        return setup

    return _make


class TestInitiation:

    def test_failed_attempt_stays_ready_for_next_run(
        self, session, paid_circle, payments, run_engine, clock,
    ):
        setup = paid_circle()
        payments.fail_next(1)

        result = run_engine()

        cycle = setup.cycle(1)
        assert result.payouts_initiated == 0
        assert cycle.status == CycleStatus.READY_PAYOUT.value
        assert cycle.payout_attempts == 1
        assert cycle.last_payout_error == "Payout initiation failed: provider unavailable"
        assert "payout_initiation_failed" in event_types(session, cycle.id)

        clock.advance(900)
        result = run_engine()

        assert result.payouts_initiated == 1
        assert cycle.status == CycleStatus.PAYOUT_PENDING.value
        assert cycle.payout_attempts == 2
        assert cycle.payout_transaction_id == "txn-2"
        assert cycle.last_payout_error is None
        assert payments.requests[1].idempotency_key == f"payout-{cycle.id}-2"

    def test_attempts_exhausted_marks_payout_failed(
        self, session, paid_circle, payments, run_engine, clock,
    ):
        setup = paid_circle()
        payments.fail_next(5)

        for _ in range(3):
            run_engine()
            clock.advance(900)

        cycle = setup.cycle(1)
        assert cycle.status == CycleStatus.PAYOUT_FAILED.value
        assert cycle.payout_attempts == 3

        [alert] = alerts_of_type(session, "payout_failed")
        assert alert.severity == AlertSeverity.CRITICAL.value
        assert alert.cycle_id == cycle.id
        assert "payout_failed" in notification_types(session, setup.recipient(1))

        # Terminal: no fourth attempt.
        run_engine()
        assert len(payments.requests) == 3

    def test_adapter_transport_error_counts_toward_limit(
        self, session, paid_circle, payments, run_engine, clock, monkeypatch,
    ):
        setup = paid_circle()

        def unreachable(request):
            payments.requests.append(request)
            raise ConnectionError("connection reset by peer")

        monkeypatch.setattr(payments, "initiate", unreachable)

        result = run_engine()

        cycle = setup.cycle(1)
        assert result.errors == ()
        assert cycle.status == CycleStatus.READY_PAYOUT.value
        assert cycle.payout_attempts == 1
        assert cycle.last_payout_error == (
            "Payout initiation failed: ConnectionError: connection reset by peer"
        )

        for _ in range(3):
            clock.advance(900)
            run_engine()

        assert cycle.status == CycleStatus.PAYOUT_FAILED.value
        assert cycle.payout_attempts == 3
        assert len(payments.requests) == 3
        assert len(alerts_of_type(session, "payout_failed")) == 1

    def test_missing_payment_method_counts_as_attempt(
        self, session, paid_circle, run_engine, payments,
    ):
        setup = paid_circle()
        method = session.execute(
            select(PaymentMethod).where(PaymentMethod.user_id == setup.recipient(1))
        ).scalar_one()
        method.status = PaymentMethodStatus.INACTIVE.value
        session.flush()

        run_engine()

        cycle = setup.cycle(1)
        assert cycle.payout_attempts == 1
        assert cycle.status == CycleStatus.READY_PAYOUT.value
        assert payments.requests == []
        failure = session.execute(
            select(CycleEvent).where(
                CycleEvent.cycle_id == cycle.id,
                CycleEvent.event_type == CycleEventType.PAYOUT_INITIATION_FAILED.value,
            )
        ).scalar_one()
        assert failure.event_data["error_code"] == "PAYMENT_METHOD_NOT_FOUND"

    def test_no_payment_adapter_leaves_cycle_ready(
        self, paid_circle, run_engine, captured_logs,
    ):
        setup = paid_circle()

        result = run_engine(payment_adapter=None)

        assert result.payouts_initiated == 0
        assert setup.cycle(1).status == CycleStatus.READY_PAYOUT.value
        assert any(
            r["message"] == "payment_adapter_not_configured" for r in captured_logs()
        )

    def test_recipient_notified_on_initiation(self, session, paid_circle, run_engine):
        setup = paid_circle()

        run_engine()

        assert "payout_initiated" in notification_types(session, setup.recipient(1))


class TestPolling:

    def test_completed_poll_closes_and_advances(
        self, session, paid_circle, run_engine, payments, clock,
    ):
        setup = paid_circle()
        run_engine()
        payments.settle("txn-1", PayoutTransactionStatus.COMPLETED, amount=Decimal("490.00"))

        clock.advance_days(1)
        result = run_engine()

        cycle = setup.cycle(1)
        assert result.payouts_completed == 1
        assert result.cycles_closed == 1
        assert cycle.status == CycleStatus.CLOSED.value
        assert cycle.actual_payout_date == date(2026, 2, 10)
        assert score_points(session, setup.recipient(1), "payout_received") == [1]
        assert "payout_received" in notification_types(session, setup.recipient(1))
        assert alerts_of_type(session, "payout_amount_mismatch") == []

    def test_amount_mismatch_raises_alert(self, session, paid_circle, run_engine, payments):
        setup = paid_circle()
        run_engine()
        payments.settle("txn-1", PayoutTransactionStatus.COMPLETED, amount=Decimal("480.00"))

        run_engine()

        [alert] = alerts_of_type(session, "payout_amount_mismatch")
        assert alert.details["reported_amount"] == "480.00"
        # Completion is still recorded; the mismatch is for an operator.
        assert setup.cycle(1).status == CycleStatus.CLOSED.value

    def test_failed_poll_is_terminal(self, session, paid_circle, run_engine, payments):
        setup = paid_circle()
        run_engine()
        payments.settle("txn-1", PayoutTransactionStatus.FAILED, error="account closed")

        run_engine()

        cycle = setup.cycle(1)
        assert cycle.status == CycleStatus.PAYOUT_FAILED.value
        assert cycle.last_payout_error == "account closed"
        assert len(alerts_of_type(session, "payout_failed")) == 1

    def test_pending_poll_changes_nothing(self, paid_circle, run_engine, payments):
        setup = paid_circle()
        run_engine()

        run_engine()

        assert setup.cycle(1).status == CycleStatus.PAYOUT_PENDING.value
        assert payments.status_calls == ["txn-1", "txn-1"]


class TestStuckPayouts:

    def test_stuck_payout_alerts_once(self, session, paid_circle, run_engine, clock):
        setup = paid_circle()
        run_engine()

        clock.advance(71 * 3600)
        run_engine()
        assert alerts_of_type(session, "payout_stuck") == []

        clock.advance(2 * 3600)
        run_engine()
        clock.advance(3600)
        run_engine()

        cycle = setup.cycle(1)
        [alert] = alerts_of_type(session, "payout_stuck")
        assert alert.details["transaction_id"] == "txn-1"
        assert event_types(session, cycle.id).count("payout_stuck") == 1
        # Detection only; the payout keeps waiting.
        assert cycle.status == CycleStatus.PAYOUT_PENDING.value
