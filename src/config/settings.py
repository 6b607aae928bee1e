# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for every policy constant of the engine: attempt
ceilings, supervisor budgets, judgment thresholds, calibration promotion
rules, concurrency window and timeouts. None of these values is
hard-coded elsewhere; components receive a Settings instance.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === LLM PROVIDERS ===
    llm_default_provider: str = "google"
    llm_default_model: str = "gemini-2.5-pro"
    llm_default_temperature: float = 0.2
    llm_max_tokens: int = 4096

    # Provider API keys
    anthropic_api_key: str = ""
    google_api_key: str = ""

    # Per-phase LLM assignment
    llm_phase_qa: str = ""
    llm_phase_supervision: str = ""

    # Per-component LLM assignment (highest priority)
    llm_judge: str = ""
    llm_judge_fallback: str = ""
    llm_auditor: str = ""

    # === Per-unit retry policy ===
    max_attempts_per_unit: int = 5
    max_total_attempts_per_run: int = 20
    retry_base_delay_s: float = 2.0
    retry_max_delay_s: float = 30.0

    # === QA judge ===
    judge_pass_threshold: int = 70
    judge_strictness_adjustment: int = 5
    judge_timeout_s: float = 90.0
    judge_violation_score_cap: int = 30
    judge_structural_score_cap: int = 25
    judge_incomplete_score_cap: int = 40

    # === Supervisor audit gate ===
    supervisor_max_retries_per_step: int = 3
    supervisor_max_total_retries: int = 10
    supervisor_min_consistency: float = 0.7
    supervisor_processing_timeout_ms: int = 45_000
    supervisor_max_images: int = 12
    supervisor_max_spaces: int = 20
    supervisor_low_confidence: float = 0.3
    supervisor_retry_loop_warn: int = 3
    supervisor_retry_loop_block: int = 5
    audit_timeout_s: float = 60.0

    # === Calibration ===
    calibration_rule_similarity: float = 0.6
    calibration_activation_support: int = 3
    calibration_min_reason_chars: int = 10
    calibration_max_rules: int = 10
    calibration_similar_cases: int = 5

    # === Batch ===
    batch_concurrency: int = 3
    generation_timeout_s: float = 300.0

    # === Store ===
    store_backend: Literal["memory", "sqlite"] = "memory"
    store_path: Path = Path("~/.qagate/engine.db")

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator(
        "max_attempts_per_unit",
        "max_total_attempts_per_run",
        "supervisor_max_retries_per_step",
        "supervisor_max_total_retries",
        "batch_concurrency",
        "calibration_activation_support",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator(
        "supervisor_min_consistency",
        "calibration_rule_similarity",
        "supervisor_low_confidence",
    )
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:  # noqa: N805
        if not 0.0 <= v <= 1.0:
            raise ValueError("must be within [0, 1]")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if not 0 <= self.judge_pass_threshold <= 100:
            errors.append("JUDGE_PASS_THRESHOLD must be within [0, 100]")

        if self.max_total_attempts_per_run < self.max_attempts_per_unit:
            errors.append(
                "MAX_TOTAL_ATTEMPTS_PER_RUN must be >= MAX_ATTEMPTS_PER_UNIT"
            )

        if self.supervisor_max_total_retries < self.supervisor_max_retries_per_step:
            errors.append(
                "SUPERVISOR_MAX_TOTAL_RETRIES must be >= SUPERVISOR_MAX_RETRIES_PER_STEP"
            )

        if self.retry_max_delay_s < self.retry_base_delay_s:
            errors.append("RETRY_MAX_DELAY_S must be >= RETRY_BASE_DELAY_S")

        if self.supervisor_retry_loop_block < self.supervisor_retry_loop_warn:
            errors.append(
                "SUPERVISOR_RETRY_LOOP_BLOCK must be >= SUPERVISOR_RETRY_LOOP_WARN"
            )

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-run config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
