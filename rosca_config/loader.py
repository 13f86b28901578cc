"""
Settings loader (``rosca_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into ``rosca_config.schema`` dataclasses.
Runtime callers go through ``rosca_config.get_engine_settings()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range or mistyped value  -> ``InvalidEngineSettingsError``.
* Unknown key  -> ``InvalidEngineSettingsError`` (typos must not be ignored).
"""

from __future__ import annotations

from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from rosca_config.schema import EngineSettings, ScoreDeltas
from rosca_kernel.exceptions import InvalidEngineSettingsError

_DECIMAL_FIELDS = frozenset({
    "reserve_coverage_cap",
    "default_platform_fee_percent",
    "late_fee_percent",
})

_FRACTION_FIELDS = _DECIMAL_FIELDS

_POSITIVE_INT_FIELDS = frozenset({
    "max_payout_attempts",
    "strict_wait_max_grace_days",
    "stuck_payout_hours",
    "engine_stall_minutes",
    "tick_interval_seconds",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Returns an empty dict for an empty file.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def merge_settings(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Shallow merge, except ``score_deltas`` which merges key by key."""
    merged = dict(base)
    for key, value in override.items():
        if key == "score_deltas" and isinstance(value, dict):
            merged[key] = {**base.get(key, {}), **value}
        else:
            merged[key] = value
    return merged


def parse_decimal(name: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidEngineSettingsError(name, value, "not a decimal") from exc


def parse_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidEngineSettingsError(name, value, "not an integer")
    return value


def parse_score_deltas(data: dict[str, Any]) -> ScoreDeltas:
    known = {f.name for f in fields(ScoreDeltas)}
    for key in data:
        if key not in known:
            raise InvalidEngineSettingsError(f"score_deltas.{key}", data[key], "unknown key")
    return ScoreDeltas(**{
        key: parse_int(f"score_deltas.{key}", value) for key, value in data.items()
    })


def parse_engine_settings(data: dict[str, Any]) -> EngineSettings:
    """
    Parse and validate an ``EngineSettings`` from a dict.

    Missing keys take the dataclass defaults.
    """
    known = {f.name for f in fields(EngineSettings)}
    kwargs: dict[str, Any] = {}

    for key, value in data.items():
        if key not in known:
            raise InvalidEngineSettingsError(key, value, "unknown key")

        if key in _DECIMAL_FIELDS:
            parsed = parse_decimal(key, value)
            if key in _FRACTION_FIELDS and not (Decimal("0") <= parsed <= Decimal("1")):
                raise InvalidEngineSettingsError(key, value, "must be between 0 and 1")
            kwargs[key] = parsed
        elif key == "reminder_offsets_days":
            if not isinstance(value, (list, tuple)):
                raise InvalidEngineSettingsError(key, value, "must be a list of days")
            offsets = tuple(parse_int(key, v) for v in value)
            if any(v < 0 for v in offsets):
                raise InvalidEngineSettingsError(key, value, "offsets must be >= 0")
            kwargs[key] = offsets
        elif key == "reminder_hour_utc":
            hour = parse_int(key, value)
            if not 0 <= hour <= 23:
                raise InvalidEngineSettingsError(key, value, "must be an hour 0-23")
            kwargs[key] = hour
        elif key == "score_deltas":
            if not isinstance(value, dict):
                raise InvalidEngineSettingsError(key, value, "must be a mapping")
            kwargs[key] = parse_score_deltas(value)
        else:
            parsed_int = parse_int(key, value)
            if key in _POSITIVE_INT_FIELDS and parsed_int < 1:
                raise InvalidEngineSettingsError(key, value, "must be >= 1")
            if parsed_int < 0:
                raise InvalidEngineSettingsError(key, value, "must be >= 0")
            kwargs[key] = parsed_int

    return EngineSettings(**kwargs)
