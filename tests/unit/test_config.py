"""Tests for configuration management."""

import pytest
from pydantic import ValidationError

from guardian_ai.config import GuardConfig, Settings, get_settings


def create_test_settings(**kwargs):
    """Helper to create Settings instance without loading .env file."""
    return Settings(_env_file=None, **kwargs)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove guard-related variables the host environment might set."""
    for key in (
        "LLM_API_KEY",
        "GROQ_API_KEY",
        "ORACLE_BACKEND",
        "ENVIRONMENT",
        "GUARD_ORACLE_TIMEOUT",
        "GUARD_HIGH_BLOCK_THRESHOLD",
        "GUARD_ESCALATION_CEILING",
        "GUARD_DECAY_SECONDS",
        "GUARD_MAX_INPUT_CHARS",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestSettingsDefaults:
    """Tests for default values."""

    def test_guard_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test guard tunables default to the documented values."""
        settings = create_test_settings()
        assert settings.llm_api_key is None
        assert settings.oracle_backend == "hardening"
        assert settings.guard_oracle_timeout == 2.0
        assert settings.guard_max_input_chars == 8192
        assert settings.guard_high_block_threshold == 2
        assert settings.guard_escalation_ceiling == 2
        assert settings.guard_decay_seconds == 3600.0
        assert settings.rate_limit_messages == 10

    def test_guard_config_mirrors_settings(self, clean_env: pytest.MonkeyPatch) -> None:
        """Test guard_config collects every tunable."""
        settings = create_test_settings(
            guard_oracle_timeout=0.5,
            guard_high_block_threshold=3,
            guard_escalation_ceiling=4,
            guard_tracker_stripes=16,
        )
        config = settings.guard_config()
        assert isinstance(config, GuardConfig)
        assert config.oracle_timeout == 0.5
        assert config.high_block_threshold == 3
        assert config.escalation_ceiling == 4
        assert config.tracker_stripes == 16
        assert config.max_input_chars == 8192

    def test_guard_config_is_frozen(self) -> None:
        """Test GuardConfig cannot be mutated."""
        config = GuardConfig()
        with pytest.raises(ValidationError):
            config.escalation_ceiling = 10  # type: ignore[misc]


class TestGuardEnabled:
    """Tests for the enable gate."""

    def test_disabled_without_key(self, clean_env: pytest.MonkeyPatch) -> None:
        assert create_test_settings().guard_enabled is False

    def test_disabled_with_empty_key(self, clean_env: pytest.MonkeyPatch) -> None:
        assert create_test_settings(llm_api_key="").guard_enabled is False

    def test_enabled_with_key(self, clean_env: pytest.MonkeyPatch) -> None:
        settings = create_test_settings(llm_api_key="abc")
        assert settings.guard_enabled is True
        assert settings.llm_api_key.get_secret_value() == "abc"

    @pytest.mark.parametrize("env_name", ["LLM_API_KEY", "GROQ_API_KEY"])
    def test_key_from_environment(self, clean_env: pytest.MonkeyPatch, env_name: str) -> None:
        clean_env.setenv(env_name, "from-env")
        settings = create_test_settings()
        assert settings.guard_enabled is True
        assert settings.llm_api_key.get_secret_value() == "from-env"

    def test_key_not_in_repr(self, clean_env: pytest.MonkeyPatch) -> None:
        settings = create_test_settings(llm_api_key="super-secret-value")
        assert "super-secret-value" not in repr(settings)


class TestSettingsValidation:
    """Tests for field validators."""

    def test_invalid_oracle_backend(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            create_test_settings(oracle_backend="magic")
        assert "oracle_backend must be one of" in str(exc_info.value)

    @pytest.mark.parametrize("backend", ["hardening", "ollama", "none"])
    def test_valid_oracle_backends(self, backend: str) -> None:
        assert create_test_settings(oracle_backend=backend).oracle_backend == backend

    @pytest.mark.parametrize(
        "field",
        ["guard_max_input_chars", "guard_escalation_ceiling", "rate_limit_messages"],
    )
    def test_counts_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            create_test_settings(**{field: 0})

    @pytest.mark.parametrize("field", ["guard_oracle_timeout", "guard_decay_seconds"])
    def test_durations_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            create_test_settings(**{field: -1.0})

    def test_high_block_threshold_not_above_ceiling(self) -> None:
        with pytest.raises(ValidationError):
            create_test_settings(guard_high_block_threshold=3, guard_escalation_ceiling=2)

    def test_env_overrides(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("GUARD_ESCALATION_CEILING", "5")
        clean_env.setenv("ORACLE_BACKEND", "none")
        settings = create_test_settings()
        assert settings.guard_escalation_ceiling == 5
        assert settings.oracle_backend == "none"


class TestSettingsProperties:
    """Tests for derived properties."""

    def test_ollama_router_url(self) -> None:
        settings = create_test_settings(ollama_router_host="localhost", ollama_router_port=9999)
        assert settings.ollama_router_url == "http://localhost:9999"

    def test_log_file_path(self) -> None:
        settings = create_test_settings(log_directory="/tmp/g", log_file_prefix="guard")
        assert settings.log_file_path == "/tmp/g/guard.log"

    @pytest.mark.parametrize(("env", "expected"), [("development", True), ("production", False)])
    def test_is_development(self, env: str, expected: bool) -> None:
        assert create_test_settings(environment=env).is_development is expected


class TestGetSettings:
    """Tests for the cached accessor."""

    def test_cached(self) -> None:
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
