"""Tests for configuration management."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from vibearchitect.config import (
    DEFAULT_MODEL,
    Config,
    FetchSettings,
    PipelineSettings,
    StageSettings,
)
from vibearchitect.models import INITIAL_MISSION_LOG


ENV_VARS = (
    "GEMINI_API_KEY",
    "API_KEY",
    "VIBEARCHITECT_TIMEOUT",
    "VIBEARCHITECT_LOG_LEVEL",
    "VIBEARCHITECT_MOCK_MODE",
    "VIBEARCHITECT_MODEL",
    "VIBEARCHITECT_OUTPUT_DIR",
    "VIBEARCHITECT_CONFIG_DIR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Clear environment variables and skip .env loading."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    with patch("vibearchitect.config.load_dotenv"):
        yield


class TestPipelineSettings:
    """Tests for per-stage settings."""

    def test_default_temperatures(self) -> None:
        """Test the built-in stage temperatures."""
        settings = PipelineSettings()

        assert settings.scout.temperature == 0.2
        assert settings.architect.temperature == 0.4
        assert settings.taskmaster.temperature == 0.3
        assert settings.refiner.temperature == 0.2
        assert settings.for_stage("architect").model == DEFAULT_MODEL

    def test_from_dict_overrides_single_stage(self) -> None:
        """Test that only the configured stage changes."""
        settings = PipelineSettings.from_dict({"stages": {"scout": {"temperature": 0.7}}})

        assert settings.scout.temperature == 0.7
        assert settings.architect.temperature == 0.4

    def test_model_override_applies_to_unset_stages(self) -> None:
        """Test that a global model is used where a stage has none of its own."""
        settings = PipelineSettings.from_dict(
            {"stages": {"refiner": {"model": "stage-model"}}},
            model="global-model",
        )

        assert settings.scout.model == "global-model"
        assert settings.refiner.model == "stage-model"

    def test_from_dict_empty(self) -> None:
        """Test that an empty document gives defaults."""
        assert PipelineSettings.from_dict({}) == PipelineSettings()

    def test_stage_settings_from_dict(self) -> None:
        """Test StageSettings fallback values."""
        defaults = StageSettings(temperature=0.3, model="m")

        assert StageSettings.from_dict({}, defaults) == defaults


class TestFetchSettings:
    """Tests for fetch settings."""

    def test_defaults(self) -> None:
        """Test default fetch limits."""
        settings = FetchSettings()

        assert settings.max_files == 20
        assert ".tsx" in settings.extensions
        assert "node_modules" in settings.excluded_markers
        assert settings.priority_files == ("package.json",)

    def test_from_dict(self) -> None:
        """Test reading the fetch section."""
        settings = FetchSettings.from_dict({"fetch": {"max_files": 3, "extensions": [".py"]}})

        assert settings.max_files == 3
        assert settings.extensions == (".py",)


class TestConfig:
    """Tests for Config."""

    def test_from_env_defaults(self, tmp_path: Path) -> None:
        """Test loading with no environment set."""
        config = Config.from_env(tmp_path)

        assert config.gemini_api_key is None
        assert config.timeout == 300
        assert config.log_level == "INFO"
        assert config.mock_mode is False
        assert config.config_dir == tmp_path

    def test_from_env_reads_variables(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that environment variables are honoured."""
        monkeypatch.setenv("GEMINI_API_KEY", "test-key")
        monkeypatch.setenv("VIBEARCHITECT_TIMEOUT", "60")
        monkeypatch.setenv("VIBEARCHITECT_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("VIBEARCHITECT_MOCK_MODE", "true")
        monkeypatch.setenv("VIBEARCHITECT_MODEL", "gemini-other")
        monkeypatch.setenv("VIBEARCHITECT_OUTPUT_DIR", str(tmp_path / "out"))

        config = Config.from_env(tmp_path)

        assert config.gemini_api_key == "test-key"
        assert config.timeout == 60
        assert config.log_level == "DEBUG"
        assert config.mock_mode is True
        assert config.pipeline.scout.model == "gemini-other"
        assert config.output_dir == tmp_path / "out"

    def test_api_key_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that API_KEY is used when GEMINI_API_KEY is unset."""
        monkeypatch.setenv("API_KEY", "fallback-key")

        assert Config.from_env(tmp_path).gemini_api_key == "fallback-key"

    def test_config_dir_from_env(self, config_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test VIBEARCHITECT_CONFIG_DIR and pipeline.yaml loading."""
        monkeypatch.setenv("VIBEARCHITECT_CONFIG_DIR", str(config_dir))

        config = Config.from_env()

        assert config.config_dir == config_dir
        assert config.pipeline.scout.temperature == 0.1
        assert config.pipeline.refiner.model == "gemini-test-model"
        assert config.fetch.max_files == 5
        assert config.fetch.max_workers == 2

    def test_validate_requires_key(self) -> None:
        """Test that a missing key is an error outside mock mode."""
        errors = Config().validate()

        assert any("GEMINI_API_KEY" in e for e in errors)

    def test_validate_mock_mode_without_key(self) -> None:
        """Test that mock mode needs no key."""
        assert Config(mock_mode=True).validate() == []

    def test_validate_ranges(self) -> None:
        """Test that bad limits and temperatures are reported."""
        config = Config(gemini_api_key="k")
        config.fetch.max_files = 0
        config.pipeline.architect.temperature = 3.0

        errors = config.validate()

        assert len(errors) == 2
        assert any("max_files" in e for e in errors)
        assert any("architect" in e for e in errors)

    def test_validate_max_workers(self) -> None:
        """Test that a fetch pool without workers is rejected up front."""
        config = Config(mock_mode=True)
        config.fetch.max_workers = 0

        errors = config.validate()

        assert errors == ["fetch.max_workers must be at least 1, got 0"]

    def test_manifesto_default(self, tmp_path: Path) -> None:
        """Test the built-in manifesto is used without an override file."""
        config = Config(config_dir=tmp_path)

        assert config.load_manifesto() == INITIAL_MISSION_LOG

    def test_manifesto_override(self, tmp_path: Path) -> None:
        """Test that config/manifesto.md replaces the built-in manifesto."""
        (tmp_path / "manifesto.md").write_text("# MISSION CONTROL\nCustom rules\n")
        config = Config(config_dir=tmp_path)

        assert config.load_manifesto() == "# MISSION CONTROL\nCustom rules\n"
