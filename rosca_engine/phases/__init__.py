"""Engine phases, in the order the orchestrator runs them."""

from rosca_engine.context import EngineContext
from rosca_engine.phases.base import BasePhase, CyclePhase, PhaseCounters
from rosca_engine.phases.closer import CloseCyclesPhase
from rosca_engine.phases.deadlines import DeadlinePhase, check_policy_handlers
from rosca_engine.phases.grace import GracePeriodPhase
from rosca_engine.phases.payouts import PayoutInitiationPhase, PayoutStatusPhase
from rosca_engine.phases.starter import StartCyclesPhase


def default_phases(ctx: EngineContext) -> list[CyclePhase]:
    return [
        StartCyclesPhase(ctx),
        DeadlinePhase(ctx),
        GracePeriodPhase(ctx),
        PayoutInitiationPhase(ctx),
        PayoutStatusPhase(ctx),
        CloseCyclesPhase(ctx),
    ]


__all__ = [
    "BasePhase",
    "CloseCyclesPhase",
    "CyclePhase",
    "DeadlinePhase",
    "GracePeriodPhase",
    "PayoutInitiationPhase",
    "PayoutStatusPhase",
    "PhaseCounters",
    "StartCyclesPhase",
    "check_policy_handlers",
    "default_phases",
]
