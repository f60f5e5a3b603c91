"""Configuration management for Guardian AI."""

from __future__ import annotations

from functools import lru_cache
from typing import Self

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class GuardConfig(BaseModel):
    """Every tunable of the injection guard, in one explicit structure.

    Built from :class:`Settings` via :meth:`Settings.guard_config`, or
    directly in tests.
    """

    model_config = ConfigDict(frozen=True)

    max_input_chars: int = Field(default=8192, gt=0)
    oracle_timeout: float = Field(default=2.0, gt=0)
    extraction_threshold: int = Field(default=2, ge=1)
    high_block_threshold: int = Field(default=2, ge=1)
    escalation_ceiling: int = Field(default=2, ge=1)
    decay_seconds: float = Field(default=3600.0, gt=0)
    max_tracked_actors: int = Field(default=10_000, gt=0)
    tracker_stripes: int = Field(default=64, gt=0)
    rate_limit_messages: int = Field(default=10, gt=0)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    rate_limit_warning_cooldown: float = Field(default=30.0, ge=0)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
        populate_by_name=True,
    )

    # Downstream language model. The guard is a no-op without it.
    llm_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("LLM_API_KEY", "GROQ_API_KEY", "llm_api_key"),
        description="Credential for the language-model service; enables the guard",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Logging Configuration
    log_to_file: bool = Field(default=True, description="Enable file-based logging")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=5242880,  # 5MB
        description="Max size per log file before rotation",
    )
    log_file_backup_count: int = Field(default=5, description="Number of rotated log files to keep")
    log_file_prefix: str = Field(default="guardian_ai", description="Prefix for log file names")

    # Detection oracle (second layer)
    oracle_backend: str = Field(
        default="hardening", description="Second detection layer: hardening, ollama or none"
    )
    ollama_router_host: str = Field(default="ollama-router", description="Ollama router host")
    ollama_router_port: int = Field(default=11434, description="Ollama router API port")
    ollama_router_model: str = Field(
        default="llama3.2:3b", description="Ollama model for security classification"
    )

    # Guard tuning
    guard_oracle_timeout: float = Field(
        default=2.0, description="Seconds to wait for the detection oracle before going local-only"
    )
    guard_max_input_chars: int = Field(
        default=8192, description="Characters matched per message; the rest is truncated"
    )
    guard_extraction_threshold: int = Field(
        default=2, description="Extraction hints that make a message an extraction attempt"
    )
    guard_high_block_threshold: int = Field(
        default=2, description="Attempts within the window at which high-risk messages are blocked"
    )
    guard_escalation_ceiling: int = Field(
        default=2, description="Attempts within the window at which every message is blocked"
    )
    guard_decay_seconds: float = Field(
        default=3600.0, description="Inactivity after which an actor's attempts reset"
    )
    guard_max_tracked_actors: int = Field(
        default=10_000, description="Upper bound on actors held by the escalation tracker"
    )
    guard_tracker_stripes: int = Field(default=64, description="Lock stripes in the tracker")

    # Rate limiting
    rate_limit_messages: int = Field(default=10, description="Messages allowed per window")
    rate_limit_window_seconds: float = Field(default=60.0, description="Rate limit window")
    rate_limit_warning_cooldown: float = Field(
        default=30.0, description="Minimum seconds between rate-limit warnings"
    )

    @property
    def log_file_path(self) -> str:
        """Get the full log file path."""
        return f"{self.log_directory}/{self.log_file_prefix}.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def ollama_router_url(self) -> str:
        """Get the Ollama router URL."""
        return f"http://{self.ollama_router_host}:{self.ollama_router_port}"

    @property
    def guard_enabled(self) -> bool:
        """The guard only runs when a language-model credential is configured."""
        return self.llm_api_key is not None and bool(self.llm_api_key.get_secret_value())

    @field_validator("oracle_backend")
    @classmethod
    def validate_oracle_backend(cls, v: str) -> str:
        """Validate oracle backend choice."""
        valid_backends = ["hardening", "ollama", "none"]
        if v not in valid_backends:
            raise ValueError(f"oracle_backend must be one of {valid_backends}, got: {v}")
        return v

    @field_validator(
        "guard_max_input_chars",
        "guard_extraction_threshold",
        "guard_high_block_threshold",
        "guard_escalation_ceiling",
        "guard_max_tracked_actors",
        "guard_tracker_stripes",
        "rate_limit_messages",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Counts and sizes must be at least 1."""
        if v < 1:
            raise ValueError(f"Value must be at least 1, got: {v}")
        return v

    @field_validator("guard_oracle_timeout", "guard_decay_seconds", "rate_limit_window_seconds")
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        """Durations must be positive."""
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_escalation_order(self) -> Self:
        """Blocking high-risk repeats must not wait longer than full escalation."""
        if self.guard_high_block_threshold > self.guard_escalation_ceiling:
            raise ValueError(
                "guard_high_block_threshold must not exceed guard_escalation_ceiling"
            )
        return self

    def guard_config(self) -> GuardConfig:
        """Collect the guard tunables into a :class:`GuardConfig`."""
        return GuardConfig(
            max_input_chars=self.guard_max_input_chars,
            oracle_timeout=self.guard_oracle_timeout,
            extraction_threshold=self.guard_extraction_threshold,
            high_block_threshold=self.guard_high_block_threshold,
            escalation_ceiling=self.guard_escalation_ceiling,
            decay_seconds=self.guard_decay_seconds,
            max_tracked_actors=self.guard_max_tracked_actors,
            tracker_stripes=self.guard_tracker_stripes,
            rate_limit_messages=self.rate_limit_messages,
            rate_limit_window_seconds=self.rate_limit_window_seconds,
            rate_limit_warning_cooldown=self.rate_limit_warning_cooldown,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
