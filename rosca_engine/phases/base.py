"""
CyclePhase protocol and shared phase plumbing.

Contract:
    A phase selects the cycles it acts on from their current persisted
    status, then processes them one at a time.  The orchestrator owns the
    SAVEPOINT lifecycle; a phase only flushes.

    ``process_cycle()`` returns counter increments keyed by the names in
    ``rosca_engine.domain.types.RUN_COUNTERS``.  Any exception it raises is
    a failure of that cycle only.

Non-goals:
    - Does NOT commit or roll back.
    - Does NOT catch its own errors; failures belong to the orchestrator.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rosca_kernel.models.circle import Circle
from rosca_kernel.models.cycle import CircleCycle
from rosca_kernel.models.cycle_event import CycleEventType

from rosca_engine.context import EngineContext
from rosca_engine.queries import get_circle
from rosca_engine.services.resolution import CycleResolutionService

PhaseCounters = dict[str, int]


@runtime_checkable
class CyclePhase(Protocol):

    @property
    def name(self) -> str: ...

    @property
    def failure_event_type(self) -> CycleEventType: ...

    def select_cycles(self) -> list[CircleCycle]: ...

    def process_cycle(self, cycle: CircleCycle) -> PhaseCounters: ...


class BasePhase:
    """Holds the context and the resolution helpers every phase uses."""

    name = "phase"
    failure_event_type = CycleEventType.SYSTEM_ERROR

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx
        self.resolution = CycleResolutionService(ctx)

    def circle_of(self, cycle: CircleCycle) -> Circle:
        return get_circle(self.ctx.session, cycle.circle_id)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
