# tests/unit/config/test_settings.py — v1
"""Tests for config/settings.py — typed Settings and validation rules."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from qagate.config.settings import ConfigurationError, Settings, load_settings


class TestSettingsDefaults:
    def test_retry_policy(self):
        s = Settings(_env_file=None)
        assert s.max_attempts_per_unit == 5
        assert s.max_total_attempts_per_run == 20
        assert s.retry_base_delay_s == 2.0
        assert s.retry_max_delay_s == 30.0

    def test_judge(self):
        s = Settings(_env_file=None)
        assert s.judge_pass_threshold == 70
        assert s.judge_strictness_adjustment == 5
        assert s.judge_violation_score_cap == 30

    def test_supervisor(self):
        s = Settings(_env_file=None)
        assert s.supervisor_max_retries_per_step == 3
        assert s.supervisor_max_total_retries == 10
        assert s.supervisor_min_consistency == 0.7
        assert s.supervisor_max_images == 12
        assert s.supervisor_max_spaces == 20

    def test_calibration(self):
        s = Settings(_env_file=None)
        assert s.calibration_rule_similarity == 0.6
        assert s.calibration_activation_support == 3

    def test_store_and_batch(self):
        s = Settings(_env_file=None)
        assert s.store_backend == "memory"
        assert s.store_path == Path("~/.qagate/engine.db")
        assert s.batch_concurrency == 3


class TestSettingsValidation:
    def test_run_ceiling_below_unit_budget(self):
        with pytest.raises(ConfigurationError, match="MAX_TOTAL_ATTEMPTS_PER_RUN"):
            Settings(_env_file=None, max_attempts_per_unit=5, max_total_attempts_per_run=3)

    def test_supervisor_total_below_step(self):
        with pytest.raises(ConfigurationError, match="SUPERVISOR_MAX_TOTAL_RETRIES"):
            Settings(
                _env_file=None,
                supervisor_max_retries_per_step=4,
                supervisor_max_total_retries=2,
            )

    def test_threshold_out_of_range(self):
        with pytest.raises(ConfigurationError, match="JUDGE_PASS_THRESHOLD"):
            Settings(_env_file=None, judge_pass_threshold=120)

    def test_delay_order(self):
        with pytest.raises(ConfigurationError, match="RETRY_MAX_DELAY_S"):
            Settings(_env_file=None, retry_base_delay_s=10.0, retry_max_delay_s=1.0)

    def test_retry_loop_order(self):
        with pytest.raises(ConfigurationError, match="RETRY_LOOP_BLOCK"):
            Settings(_env_file=None, supervisor_retry_loop_warn=5, supervisor_retry_loop_block=2)

    def test_zero_concurrency_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, batch_concurrency=0)

    def test_consistency_out_of_interval(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, supervisor_min_consistency=1.5)

    def test_unknown_backend(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, store_backend="redis")


class TestLoadSettings:
    def test_overrides(self):
        s = load_settings(_env_file=None, max_attempts_per_unit=2, store_backend="sqlite")
        assert s.max_attempts_per_unit == 2
        assert s.store_backend == "sqlite"

    def test_env_variable(self, monkeypatch):
        monkeypatch.setenv("JUDGE_PASS_THRESHOLD", "80")
        s = Settings(_env_file=None)
        assert s.judge_pass_threshold == 80
