"""
Tests for rosca_config: packaged defaults, override merging and validation.
"""

from decimal import Decimal

import pytest

from rosca_config import DEFAULTS_PATH, get_engine_settings
from rosca_config.loader import load_yaml_file, merge_settings, parse_engine_settings
from rosca_config.schema import EngineSettings, ScoreDeltas
from rosca_kernel.exceptions import InvalidEngineSettingsError


class TestDefaults:

    def test_packaged_defaults_match_dataclass(self):
        assert get_engine_settings() == EngineSettings()

    def test_defaults_file_values(self):
        data = load_yaml_file(DEFAULTS_PATH)

        assert data["reserve_coverage_cap"] == "0.20"
        assert data["max_payout_attempts"] == 3
        assert data["score_deltas"]["contribution_default"] == -30

    def test_decimal_fields_are_decimals(self):
        settings = get_engine_settings()

        assert settings.reserve_coverage_cap == Decimal("0.20")
        assert isinstance(settings.late_fee_percent, Decimal)
        assert settings.reminder_offsets_days == (7, 3, 1, 0)


class TestOverrides:

    def test_override_file_applied(self, tmp_path):
        override = tmp_path / "prod.yaml"
        override.write_text(
            "max_payout_attempts: 5\n"
            "score_deltas:\n"
            "  contribution_default: -50\n"
        )

        settings = get_engine_settings(override)

        assert settings.max_payout_attempts == 5
        assert settings.score_deltas.contribution_default == -50
        # Untouched deltas keep their defaults.
        assert settings.score_deltas.vouchee_default == -10

    def test_empty_override_file(self, tmp_path):
        override = tmp_path / "empty.yaml"
        override.write_text("")

        assert get_engine_settings(override) == EngineSettings()

    def test_missing_override_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_engine_settings(tmp_path / "absent.yaml")

    def test_merge_is_shallow_except_score_deltas(self):
        merged = merge_settings(
            {"a": 1, "score_deltas": {"x": 1, "y": 2}},
            {"a": 2, "score_deltas": {"y": 3}},
        )
        assert merged == {"a": 2, "score_deltas": {"x": 1, "y": 3}}


class TestValidation:

    @pytest.mark.parametrize("data,field_name", [
        ({"reserve_cap": "0.2"}, "reserve_cap"),
        ({"reserve_coverage_cap": "1.5"}, "reserve_coverage_cap"),
        ({"late_fee_percent": "-0.01"}, "late_fee_percent"),
        ({"late_fee_percent": "lots"}, "late_fee_percent"),
        ({"max_payout_attempts": 0}, "max_payout_attempts"),
        ({"max_payout_attempts": True}, "max_payout_attempts"),
        ({"max_payout_attempts": "3"}, "max_payout_attempts"),
        ({"default_grace_period_days": -1}, "default_grace_period_days"),
        ({"reminder_hour_utc": 24}, "reminder_hour_utc"),
        ({"reminder_offsets_days": 3}, "reminder_offsets_days"),
        ({"reminder_offsets_days": [3, -1]}, "reminder_offsets_days"),
        ({"score_deltas": [1, 2]}, "score_deltas"),
        ({"score_deltas": {"bonus": 5}}, "score_deltas.bonus"),
    ])
    def test_invalid_values_rejected(self, data, field_name):
        with pytest.raises(InvalidEngineSettingsError) as exc_info:
            parse_engine_settings(data)
        assert exc_info.value.field_name == field_name

    def test_zero_grace_days_allowed(self):
        assert parse_engine_settings({"default_grace_period_days": 0}).default_grace_period_days == 0

    def test_partial_score_deltas(self):
        settings = parse_engine_settings({"score_deltas": {"payout_received": 3}})
        assert settings.score_deltas == ScoreDeltas(payout_received=3)

    def test_settings_are_frozen(self):
        settings = EngineSettings()
        with pytest.raises(AttributeError):
            settings.max_payout_attempts = 10
