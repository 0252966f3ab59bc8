# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for processing defaults. Every field can be set
through an AI_SCAN_-prefixed environment variable (e.g. AI_SCAN_DELAY_SECONDS)
or the .env file; CLI flags override whatever is loaded here.
"""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_MINI_BATCH_SIZE = 1
MAX_MINI_BATCH_SIZE = 10


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AI_SCAN_",
        extra="ignore",
    )

    # === Batching ===
    batch_size: int = 100
    mini_batch_size: int = 5
    delay_seconds: float = 5.0

    # === Worker invocation ===
    worker_command: str = "claude"
    worker_args: str = "-p"
    timeout_ms: int = 180_000
    retries: int = 3
    retry_base_delay_s: float = 5.0
    rate_limit_base_delay_s: float = 60.0
    max_retry_delay_s: float = 300.0

    # === Output ===
    ai_model: str = "claude-opus-4-5-20251101"
    base_prompt_tokens: int = 2000
    default_processing_time_s: int = 60

    # === Persisted state ===
    checkpoint_file: Path = Path(".ai-scan-checkpoint.json")
    checkpoint_file_name: str = ".ai-scan-checkpoint.json"
    lock_file_name: str = ".ai-scan.lock"
    stale_lock_hours: float = 24.0

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_rotation: str = "10MB"
    log_retention: int = 5

    # --- Validators ---

    @field_validator("mini_batch_size")
    @classmethod
    def validate_mini_batch_size(cls, v: int) -> int:  # noqa: N805
        if not MIN_MINI_BATCH_SIZE <= v <= MAX_MINI_BATCH_SIZE:
            raise ValueError(
                f"mini_batch_size must be between {MIN_MINI_BATCH_SIZE} "
                f"and {MAX_MINI_BATCH_SIZE}"
            )
        return v

    @field_validator("batch_size", "retries", "timeout_ms")
    @classmethod
    def validate_positive(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.delay_seconds < 0:
            errors.append("DELAY_SECONDS must be >= 0")

        if self.mini_batch_size > self.batch_size:
            errors.append("MINI_BATCH_SIZE must be <= BATCH_SIZE")

        if self.retry_base_delay_s < 0 or self.rate_limit_base_delay_s < 0:
            errors.append("retry base delays must be >= 0")

        if self.max_retry_delay_s < self.retry_base_delay_s:
            errors.append("MAX_RETRY_DELAY_S must be >= RETRY_BASE_DELAY_S")

        if self.lock_file_name == self.checkpoint_file_name:
            errors.append("LOCK_FILE_NAME and CHECKPOINT_FILE_NAME must differ")

        if not self.worker_command.strip():
            errors.append("WORKER_COMMAND must not be empty")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def worker_args_list(self) -> list[str]:
        """Split worker_args the way a shell would."""
        return shlex.split(self.worker_args)

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or CLI flags).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
