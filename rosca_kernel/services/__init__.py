"""Kernel services (write side)."""

from rosca_kernel.services.cycle_transitions import CycleTransitionService
from rosca_kernel.services.event_recorder import CycleEventRecorder
from rosca_kernel.services.ops_alerts import OpsAlertService
from rosca_kernel.services.reserve_coverage import (
    CoverageOutcome,
    CoverageResult,
    ReserveCoverageService,
)

__all__ = [
    "CoverageOutcome",
    "CoverageResult",
    "CycleEventRecorder",
    "CycleTransitionService",
    "OpsAlertService",
    "ReserveCoverageService",
]
