"""
Engine settings schema (``rosca_config.schema``).

Frozen dataclasses produced by ``rosca_config.loader`` from YAML.  The
cycle engine receives an ``EngineSettings`` instance by injection and never
reads files or environment variables itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class ScoreDeltas:
    """Trust-score points applied for cycle outcomes (negative = penalty)."""

    contribution_late: int = -5
    contribution_default: int = -30
    vouchee_default: int = -10
    contribution_on_time: int = 2
    circle_completed: int = 10
    payout_received: int = 1


@dataclass(frozen=True)
class EngineSettings:
    """Tunable parameters of the cycle progression engine.

    Monetary fractions are Decimal (0.20 means 20%).
    """

    reserve_coverage_cap: Decimal = Decimal("0.20")
    max_payout_attempts: int = 3
    strict_wait_max_grace_days: int = 30
    default_grace_period_days: int = 2
    default_platform_fee_percent: Decimal = Decimal("0.02")
    late_fee_percent: Decimal = Decimal("0.05")
    stuck_payout_hours: int = 72
    reminder_offsets_days: tuple[int, ...] = (7, 3, 1, 0)
    reminder_hour_utc: int = 9
    engine_stall_minutes: int = 30
    tick_interval_seconds: int = 900
    score_deltas: ScoreDeltas = field(default_factory=ScoreDeltas)
