"""
rosca_config -- single public entrypoint for engine settings.

Responsibility:
    ``get_engine_settings()`` is the one way to obtain ``EngineSettings`` at
    runtime.  It loads the packaged ``defaults.yaml`` and, when given, a
    deployment override file, validates the merged mapping, and returns a
    frozen dataclass.

Architecture position:
    Configuration.  Sits above ``rosca_kernel`` (imports its exceptions and
    logging) and below ``rosca_engine``.  The kernel never imports from here;
    kernel services receive plain values (reserve cap, etc.) instead.

Failure modes:
    - ``FileNotFoundError`` -- override path does not exist.
    - ``InvalidEngineSettingsError`` -- validation failure.
"""

from __future__ import annotations

from pathlib import Path

from rosca_config.loader import load_yaml_file, merge_settings, parse_engine_settings
from rosca_config.schema import EngineSettings, ScoreDeltas
from rosca_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_engine_settings(override_path: Path | None = None) -> EngineSettings:
    """Load packaged defaults, apply an optional override file, validate."""
    data = load_yaml_file(DEFAULTS_PATH)
    if override_path is not None:
        data = merge_settings(data, load_yaml_file(Path(override_path)))

    settings = parse_engine_settings(data)
    logger.info(
        "engine_settings_loaded",
        extra={
            "override_path": str(override_path) if override_path else None,
            "reserve_coverage_cap": str(settings.reserve_coverage_cap),
            "max_payout_attempts": settings.max_payout_attempts,
        },
    )
    return settings


__all__ = ["EngineSettings", "ScoreDeltas", "get_engine_settings"]
