"""
EngineScheduler -- in-process fixed-interval trigger for the cycle engine.

Contract:
    ``tick()`` opens a session, runs the engine (and the reminder dispatcher
    when configured), commits, and closes the session.  ``start()`` /
    ``stop()`` run ticks on a background thread every
    ``tick_interval_seconds``.

Non-goals:
    - NOT a distributed scheduler: one active instance per deployment.
    - Does NOT interrupt a run in progress; the stop signal is honoured
      between ticks.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Callable

from sqlalchemy.orm import Session

from rosca_kernel.logging_config import get_logger

from rosca_engine.domain.types import EngineRunResult

if TYPE_CHECKING:
    from rosca_engine.orchestrator import CycleProgressionEngine
    from rosca_engine.services.reminders import ReminderDispatcher

logger = get_logger("engine.scheduler")

DEFAULT_TICK_INTERVAL_SECONDS = 900


class EngineScheduler:

    def __init__(
        self,
        session_factory: Callable[[], Session],
        engine_factory: Callable[[Session], CycleProgressionEngine],
        reminder_factory: Callable[[Session], ReminderDispatcher] | None = None,
        tick_interval_seconds: int = DEFAULT_TICK_INTERVAL_SECONDS,
    ):
        self._session_factory = session_factory
        self._engine_factory = engine_factory
        self._reminder_factory = reminder_factory
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> EngineRunResult | None:
        """Run the engine once (public for testing).

        Returns None when the tick failed and was rolled back.
        """
        session = self._session_factory()
        try:
            result = self._engine_factory(session).run()
            if self._reminder_factory is not None:
                self._reminder_factory(session).dispatch_due()
            session.commit()
            return result
        except Exception:
            session.rollback()
            logger.exception("scheduler_tick_failed")
            return None
        finally:
            session.close()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="cycle-engine-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait up to ``timeout`` seconds for the thread."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._tick_interval)
