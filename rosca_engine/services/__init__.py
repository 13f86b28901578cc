"""Engine services: cycle resolution, payouts, webhooks, reminders, health, scheduling."""

from rosca_engine.services.contribution_processor import ContributionProcessor
from rosca_engine.services.health import EngineHealthCheck
from rosca_engine.services.payouts import PayoutService
from rosca_engine.services.reminders import ReminderDispatcher
from rosca_engine.services.resolution import CycleResolutionService
from rosca_engine.services.scheduler import EngineScheduler

__all__ = [
    "ContributionProcessor",
    "CycleResolutionService",
    "EngineHealthCheck",
    "EngineScheduler",
    "PayoutService",
    "ReminderDispatcher",
]
