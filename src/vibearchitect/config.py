"""Configuration management for vibe-architect."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from .models import INITIAL_MISSION_LOG


DEFAULT_MODEL = "gemini-3-pro-preview"

DEFAULT_EXTENSIONS = (
    ".ts", ".tsx", ".js", ".jsx", ".py", ".rb", ".go", ".rs", ".java",
    ".c", ".cpp", ".h", ".css", ".html", ".json", ".md",
)

# Path fragments that mark lock files, build output and dependency directories
DEFAULT_EXCLUDED_MARKERS = ("lock", "node_modules", "dist/", "build/")

DEFAULT_PRIORITY_FILES = ("package.json",)


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class StageSettings:
    """Model settings for a single agent stage."""

    temperature: float
    model: str = DEFAULT_MODEL

    @classmethod
    def from_dict(cls, data: dict, defaults: StageSettings) -> StageSettings:
        """Create StageSettings from dictionary, falling back to defaults."""
        return cls(
            temperature=float(data.get("temperature", defaults.temperature)),
            model=data.get("model", defaults.model),
        )


@dataclass
class PipelineSettings:
    """Per-stage settings for Scout, Architect, Taskmaster and Refiner."""

    scout: StageSettings = field(default_factory=lambda: StageSettings(temperature=0.2))
    architect: StageSettings = field(default_factory=lambda: StageSettings(temperature=0.4))
    taskmaster: StageSettings = field(default_factory=lambda: StageSettings(temperature=0.3))
    refiner: StageSettings = field(default_factory=lambda: StageSettings(temperature=0.2))

    @classmethod
    def from_dict(cls, data: dict, model: Optional[str] = None) -> PipelineSettings:
        """Create PipelineSettings from the ``stages`` section of pipeline.yaml.

        Args:
            data: Parsed YAML document.
            model: Optional model applied to every stage that does not set its own.
        """
        stages_data = data.get("stages", {}) or {}
        defaults = cls()
        settings = {}
        for name in ("scout", "architect", "taskmaster", "refiner"):
            base: StageSettings = getattr(defaults, name)
            if model:
                base = StageSettings(temperature=base.temperature, model=model)
            settings[name] = StageSettings.from_dict(stages_data.get(name, {}) or {}, base)
        return cls(**settings)

    def for_stage(self, name: str) -> StageSettings:
        """Get settings for a stage by name."""
        return getattr(self, name)


@dataclass
class FetchSettings:
    """Settings for pulling files from the hosting API."""

    max_files: int = 20
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    excluded_markers: tuple[str, ...] = DEFAULT_EXCLUDED_MARKERS
    priority_files: tuple[str, ...] = DEFAULT_PRIORITY_FILES
    max_workers: int = 8
    timeout: int = 30

    @classmethod
    def from_dict(cls, data: dict) -> FetchSettings:
        """Create FetchSettings from the ``fetch`` section of pipeline.yaml."""
        fetch_data = data.get("fetch", {}) or {}
        return cls(
            max_files=int(fetch_data.get("max_files", 20)),
            extensions=tuple(fetch_data.get("extensions", DEFAULT_EXTENSIONS)),
            excluded_markers=tuple(fetch_data.get("excluded_markers", DEFAULT_EXCLUDED_MARKERS)),
            priority_files=tuple(fetch_data.get("priority_files", DEFAULT_PRIORITY_FILES)),
            max_workers=int(fetch_data.get("max_workers", 8)),
            timeout=int(fetch_data.get("timeout", 30)),
        )


def load_pipeline_file(config_dir: Path) -> dict:
    """Load pipeline.yaml from the config directory, or an empty dict."""
    pipeline_path = config_dir / "pipeline.yaml"
    if pipeline_path.exists():
        with open(pipeline_path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    return {}


@dataclass
class Config:
    """Configuration settings for vibe-architect."""

    # API Keys
    gemini_api_key: Optional[str] = None

    # Paths
    config_dir: Path = field(default_factory=lambda: Path.cwd() / "config")
    output_dir: Path = field(default_factory=lambda: Path.cwd() / "mission")

    # LLM Settings
    timeout: int = 300

    # Runtime Settings
    log_level: str = "INFO"
    mock_mode: bool = False

    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    fetch: FetchSettings = field(default_factory=FetchSettings)

    @classmethod
    def from_env(cls, config_dir: Optional[Path] = None) -> Config:
        """Load configuration from environment variables and config/pipeline.yaml.

        Args:
            config_dir: Optional config directory. Defaults to VIBEARCHITECT_CONFIG_DIR
                or ./config.

        Returns:
            Config instance populated from environment.
        """
        load_dotenv()

        if config_dir is None:
            env_dir = os.getenv("VIBEARCHITECT_CONFIG_DIR")
            config_dir = Path(env_dir) if env_dir else Path.cwd() / "config"
        config_dir = Path(config_dir)

        data = load_pipeline_file(config_dir)
        output_dir = os.getenv("VIBEARCHITECT_OUTPUT_DIR")

        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY"),
            config_dir=config_dir,
            output_dir=Path(output_dir) if output_dir else Path.cwd() / "mission",
            timeout=int(os.getenv("VIBEARCHITECT_TIMEOUT", "300")),
            log_level=os.getenv("VIBEARCHITECT_LOG_LEVEL", "INFO"),
            mock_mode=_env_flag("VIBEARCHITECT_MOCK_MODE"),
            pipeline=PipelineSettings.from_dict(data, model=os.getenv("VIBEARCHITECT_MODEL")),
            fetch=FetchSettings.from_dict(data),
        )

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of validation error messages. Empty if valid.
        """
        errors = []

        if not self.mock_mode and not self.gemini_api_key:
            errors.append("GEMINI_API_KEY is required when not in mock mode")

        if self.fetch.max_files < 1:
            errors.append(f"fetch.max_files must be at least 1, got {self.fetch.max_files}")

        if self.fetch.max_workers < 1:
            errors.append(f"fetch.max_workers must be at least 1, got {self.fetch.max_workers}")

        for name in ("scout", "architect", "taskmaster", "refiner"):
            temperature = self.pipeline.for_stage(name).temperature
            if not 0.0 <= temperature <= 2.0:
                errors.append(f"stages.{name}.temperature out of range: {temperature}")

        return errors

    @property
    def manifesto_file(self) -> Path:
        """Path to the optional manifesto override."""
        return self.config_dir / "manifesto.md"

    def load_manifesto(self) -> str:
        """Return the initial mission log, honouring config/manifesto.md when present."""
        if self.manifesto_file.exists():
            return self.manifesto_file.read_text(encoding="utf-8")
        return INITIAL_MISSION_LOG
