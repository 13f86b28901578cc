"""
Tests for CycleProgressionEngine.

Covers the EngineRun record, per-cycle failure isolation, phase aborts and
adapter injection.  Custom phase lists are passed through ``phase_factory``.
"""

import pytest
from sqlalchemy import select

from rosca_config import get_engine_settings
from rosca_kernel.exceptions import UnhandledPolicyError
from rosca_kernel.models import (
    AlertSeverity,
    CircleCycle,
    CycleEvent,
    CycleEventType,
    CycleStatus,
    EngineRun,
    IncompleteContributionPolicy,
    Notification,
)

from rosca_engine.orchestrator import CycleProgressionEngine
from rosca_engine.phases import BasePhase, StartCyclesPhase, check_policy_handlers

from tests.support import START, RecordingNotificationSink, alerts_of_type, count_rows


class TouchingPhase(BasePhase):
    """Writes to every scheduled cycle and fails on the chosen ones."""

    name = "touching"
    failure_event_type = CycleEventType.SYSTEM_ERROR

    def __init__(self, ctx, fail_on=()):
        super().__init__(ctx)
        self.fail_on = set(fail_on)
        self.processed = []

    def select_cycles(self):
        return list(self.ctx.session.execute(
            select(CircleCycle)
            .where(CircleCycle.status == CycleStatus.SCHEDULED.value)
            .order_by(CircleCycle.cycle_number)
        ).scalars())

    def process_cycle(self, cycle):
        self.processed.append(cycle.id)
        cycle.last_payout_error = "touched"
        self.ctx.session.flush()
        if cycle.id in self.fail_on:
            raise RuntimeError("boom")
        return {"cycles_closed": 1}


class BrokenSelectPhase(BasePhase):

    name = "broken"

    def select_cycles(self):
        raise RuntimeError("database went away")

    def process_cycle(self, cycle):
        raise AssertionError("never reached")


class TestEngineRunRecord:

    def test_run_row_persisted(self, session, make_circle, run_engine):
        make_circle(members=3)

        result = run_engine()

        run = session.get(EngineRun, result.run_id)
        assert run.status == "success"
        assert run.cycles_started == 1
        assert run.error_count == 0
        assert run.errors == []
        assert run.started_at == START
        assert run.completed_at == START

    def test_empty_database_run_succeeds(self, session, run_engine):
        result = run_engine()

        assert result.status == "success"
        assert count_rows(session, EngineRun) == 1

    def test_events_carry_run_id(self, session, make_circle, run_engine):
        setup = make_circle(members=2)

        result = run_engine()

        event = session.execute(
            select(CycleEvent).where(
                CycleEvent.cycle_id == setup.cycle(1).id,
                CycleEvent.event_type == CycleEventType.CYCLE_STARTED.value,
            )
        ).scalar_one()
        assert event.run_id == result.run_id
        assert event.occurred_at == START


class TestErrorIsolation:

    def test_failing_circle_does_not_block_others(self, session, make_circle, run_engine):
        broken = make_circle(members=3)
        broken.circle.status = "paused"
        healthy = make_circle(members=3)
        session.flush()

        result = run_engine()

        assert result.status == "completed_with_errors"
        assert result.cycles_started == 1
        assert healthy.cycle(1).status == CycleStatus.COLLECTING.value
        assert broken.cycle(1).status == CycleStatus.SCHEDULED.value

        out = result.to_dict()
        assert out["status"] == "completed_with_errors"
        assert out["cyclesStarted"] == 1
        assert out["errors"] == [{
            "phase": "start_cycles",
            "cycleId": str(broken.cycle(1).id),
            "errorCode": "CIRCLE_NOT_ACTIVE",
            "error": f"Circle {broken.circle.id} is paused, expected active",
        }]
        run = session.get(EngineRun, result.run_id)
        assert run.error_count == 1
        assert run.errors[0]["errorCode"] == "CIRCLE_NOT_ACTIVE"

    def test_failed_cycle_writes_rolled_back(self, session, make_circle, run_engine):
        first = make_circle(members=2, total_cycles=1)
        second = make_circle(members=2, total_cycles=1)
        victim = first.cycle(1)
        phases = []

        def factory(ctx):
            phase = TouchingPhase(ctx, fail_on={victim.id})
            phases.append(phase)
            return [phase]

        result = run_engine(phase_factory=factory)

        assert len(phases[0].processed) == 2
        assert result.cycles_closed == 1
        assert [(e.phase, e.cycle_id, e.error_code) for e in result.errors] == [
            ("touching", victim.id, "RuntimeError"),
        ]
        assert victim.last_payout_error is None
        assert second.cycle(1).last_payout_error == "touched"
        failure = session.execute(
            select(CycleEvent).where(
                CycleEvent.cycle_id == victim.id,
                CycleEvent.event_type == CycleEventType.SYSTEM_ERROR.value,
            )
        ).scalar_one()
        assert failure.event_data == {
            "phase": "touching", "error_code": "RuntimeError", "error": "boom",
        }

    def test_notification_failure_fails_only_that_cycle(
        self, session, make_circle, run_engine,
    ):
        unlucky = make_circle(members=2)
        lucky = make_circle(members=2)
        sink = RecordingNotificationSink(fail_for={unlucky.member_ids[1]})

        result = run_engine(notification_sink=sink)

        assert result.cycles_started == 1
        assert unlucky.cycle(1).status == CycleStatus.SCHEDULED.value
        assert lucky.cycle(1).status == CycleStatus.COLLECTING.value
        assert {user_id for user_id, _ in sink.sent} >= set(lucky.member_ids)
        # An injected sink replaces the outbox table.
        assert count_rows(session, Notification) == 0


class TestPhaseAbort:

    def test_phase_exception_fails_run_and_stops(self, session, make_circle, run_engine):
        setup = make_circle(members=2)
        later = []

        def factory(ctx):
            tail = TouchingPhase(ctx)
            later.append(tail)
            return [StartCyclesPhase(ctx), BrokenSelectPhase(ctx), tail]

        result = run_engine(phase_factory=factory)

        assert result.status == "failed"
        assert result.cycles_started == 1
        assert setup.cycle(1).status == CycleStatus.COLLECTING.value
        assert later[0].processed == []
        [failure] = result.errors
        assert failure.phase == "broken"
        assert failure.cycle_id is None
        assert failure.error_code == "RuntimeError"

        [alert] = alerts_of_type(session, "engine_run_failed")
        assert alert.severity == AlertSeverity.CRITICAL.value
        assert alert.details["phase"] == "broken"
        assert alert.details["run_id"] == str(result.run_id)
        assert session.get(EngineRun, result.run_id).status == "failed"

    def test_next_run_resumes(self, make_circle, run_engine):
        setup = make_circle(members=2)
        run_engine(phase_factory=lambda ctx: [BrokenSelectPhase(ctx)])

        result = run_engine()

        assert result.status == "success"
        assert setup.cycle(1).status == CycleStatus.COLLECTING.value


class TestConstruction:

    def test_every_policy_has_a_handler(self):
        check_policy_handlers({policy: object() for policy in IncompleteContributionPolicy})

    def test_missing_policy_handler_rejected(self):
        with pytest.raises(UnhandledPolicyError) as exc_info:
            check_policy_handlers({IncompleteContributionPolicy.STRICT_WAIT: object()})

        assert "immediate_cover" in str(exc_info.value)
        assert "strict_wait" not in str(exc_info.value)

    def test_from_session_uses_packaged_settings(self, session, clock):
        engine = CycleProgressionEngine.from_session(session, clock=clock)

        assert engine.settings == get_engine_settings()

    def test_run_with_system_clock(self, session):
        engine = CycleProgressionEngine.from_session(session)

        result = engine.run()

        assert result.status == "success"
        assert result.started_at <= result.completed_at
        assert result.started_at.tzinfo is not None
