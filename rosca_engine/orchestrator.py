"""
CycleProgressionEngine -- runs every engine phase once per invocation.

Contract:
    ``run()`` executes the phases in fixed order (start, deadlines, grace,
    payout initiation, payout status, close) and returns an
    ``EngineRunResult``.  Exactly one ``EngineRun`` row is written per call.

Architecture: rosca_engine (top-level).  Holds only injected handles; the
    per-run ``EngineContext`` is rebuilt inside ``run()`` so every event it
    records carries that run's id.

Invariants enforced:
    - SAVEPOINT per phase and a nested SAVEPOINT per cycle: a failing cycle
      rolls back only its own writes, is recorded as a ``*_failed`` event and
      in the run's error list, and the phase continues.
    - A phase-level exception rolls that phase back, stops the run, marks it
      ``failed`` and raises an ``engine_run_failed`` ops alert.  It is not
      re-raised; the next run resumes from persisted status.
    - All timestamps come from the injected Clock.

Non-goals:
    - Does NOT call ``session.commit()``; the scheduler or caller does.
"""

from __future__ import annotations

import time
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from rosca_config.schema import EngineSettings
from rosca_kernel.domain.clock import Clock, SystemClock
from rosca_kernel.logging_config import LogContext, get_logger
from rosca_kernel.models.engine_run import EngineRun, EngineRunStatus
from rosca_kernel.models.ops_alert import AlertSeverity

from rosca_engine.adapters import NotificationSink, PaymentAdapter, ScoreService
from rosca_engine.context import EngineContext
from rosca_engine.domain.types import RUN_COUNTERS, CycleFailure, EngineRunResult
from rosca_engine.phases import CyclePhase, default_phases

logger = get_logger("engine.orchestrator")

PhaseFactory = Callable[[EngineContext], list[CyclePhase]]

ENGINE_RUN_FAILED_ALERT = "engine_run_failed"


class _PhaseAborted(Exception):
    def __init__(self, phase: str, cause: Exception):
        super().__init__(str(cause))
        self.phase = phase
        self.cause = cause


class CycleProgressionEngine:

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        payment_adapter: PaymentAdapter | None = None,
        notification_sink: NotificationSink | None = None,
        score_service: ScoreService | None = None,
        phase_factory: PhaseFactory | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._payments = payment_adapter
        self._notifications = notification_sink
        self._scores = score_service
        self._phase_factory = phase_factory or default_phases

    @classmethod
    def from_session(
        cls,
        session: Session,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        payment_adapter: PaymentAdapter | None = None,
        notification_sink: NotificationSink | None = None,
        score_service: ScoreService | None = None,
    ) -> CycleProgressionEngine:
        """Create an engine with the default phase list.

        Settings default to the packaged YAML; notifications and score
        changes default to the outbox tables in ``session``.
        """
        if settings is None:
            from rosca_config import get_engine_settings

            settings = get_engine_settings()
        return cls(
            session=session,
            clock=clock,
            settings=settings,
            payment_adapter=payment_adapter,
            notification_sink=notification_sink,
            score_service=score_service,
        )

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self) -> EngineRunResult:
        run_id = uuid4()
        start_time = time.monotonic()
        started_at = self._clock.now()

        ctx = EngineContext.build(
            self._session,
            clock=self._clock,
            settings=self._settings,
            notifications=self._notifications,
            scores=self._scores,
            payments=self._payments,
            run_id=run_id,
        )
        phases = self._phase_factory(ctx)

        run = EngineRun(
            id=run_id,
            started_at=started_at,
            status=EngineRunStatus.RUNNING.value,
            errors=[],
        )
        self._session.add(run)
        self._session.flush()

        counters = dict.fromkeys(RUN_COUNTERS, 0)
        errors: list[CycleFailure] = []
        aborted: _PhaseAborted | None = None

        with LogContext.bind(run_id=str(run_id)):
            logger.info("engine_run_started")
            try:
                for phase in phases:
                    self._run_phase(ctx, phase, counters, errors)
            except _PhaseAborted as exc:
                aborted = exc
                self._record_abort(ctx, run_id, exc, errors)

            if aborted is not None:
                status = EngineRunStatus.FAILED
            elif errors:
                status = EngineRunStatus.COMPLETED_WITH_ERRORS
            else:
                status = EngineRunStatus.SUCCESS

            completed_at = self._clock.now()
            duration_ms = int((time.monotonic() - start_time) * 1000)

            for name, value in counters.items():
                setattr(run, name, value)
            run.status = status.value
            run.completed_at = completed_at
            run.duration_ms = duration_ms
            run.error_count = len(errors)
            run.errors = [e.to_dict() for e in errors]
            self._session.flush()

            logger.info(
                "engine_run_completed",
                extra={
                    "status": status.value,
                    "error_count": len(errors),
                    "duration_ms": duration_ms,
                    **counters,
                },
            )

        return EngineRunResult(
            run_id=run_id,
            status=status.value,
            errors=tuple(errors),
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=duration_ms,
            **counters,
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_phase(
        self,
        ctx: EngineContext,
        phase: CyclePhase,
        counters: dict[str, int],
        errors: list[CycleFailure],
    ) -> None:
        """Run one phase inside its own SAVEPOINT.

        Counters and errors are merged only when the phase savepoint commits.
        """
        phase_counters = dict.fromkeys(RUN_COUNTERS, 0)
        phase_errors: list[CycleFailure] = []

        savepoint = self._session.begin_nested()
        try:
            cycles = phase.select_cycles()
            for cycle in cycles:
                self._run_cycle(ctx, phase, cycle, phase_counters, phase_errors)
            savepoint.commit()
        except Exception as exc:
            savepoint.rollback()
            raise _PhaseAborted(phase.name, exc) from exc

        for name, value in phase_counters.items():
            counters[name] += value
        errors.extend(phase_errors)

        logger.info(
            "engine_phase_completed",
            extra={
                "phase": phase.name,
                "cycle_count": len(cycles),
                "error_count": len(phase_errors),
            },
        )

    def _run_cycle(
        self,
        ctx: EngineContext,
        phase: CyclePhase,
        cycle,
        counters: dict[str, int],
        errors: list[CycleFailure],
    ) -> None:
        # Captured up front: a rollback expires the instance.
        cycle_id: UUID = cycle.id
        circle_id: UUID = cycle.circle_id

        with LogContext.bind(cycle_id=str(cycle_id), circle_id=str(circle_id)):
            savepoint = self._session.begin_nested()
            try:
                result = phase.process_cycle(cycle)
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                error_code = getattr(exc, "code", type(exc).__name__)
                logger.exception(
                    "cycle_processing_failed",
                    extra={"phase": phase.name, "error_code": error_code},
                )
                ctx.events.record(
                    phase.failure_event_type,
                    cycle_id=cycle_id,
                    circle_id=circle_id,
                    data={"phase": phase.name, "error_code": error_code, "error": str(exc)},
                )
                errors.append(CycleFailure(
                    phase=phase.name,
                    cycle_id=cycle_id,
                    error_code=error_code,
                    message=str(exc),
                ))
                return

        for name, value in result.items():
            counters[name] += value

    def _record_abort(
        self,
        ctx: EngineContext,
        run_id: UUID,
        aborted: _PhaseAborted,
        errors: list[CycleFailure],
    ) -> None:
        cause = aborted.cause
        error_code = getattr(cause, "code", type(cause).__name__)
        logger.error(
            "engine_phase_aborted",
            exc_info=cause,
            extra={"phase": aborted.phase, "error_code": error_code},
        )
        errors.append(CycleFailure(
            phase=aborted.phase,
            cycle_id=None,
            error_code=error_code,
            message=str(cause),
        ))
        ctx.alerts.raise_alert(
            ENGINE_RUN_FAILED_ALERT,
            details={
                "run_id": run_id,
                "phase": aborted.phase,
                "error_code": error_code,
                "error": str(cause),
            },
            severity=AlertSeverity.CRITICAL,
        )
