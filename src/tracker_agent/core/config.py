"""Configuration management with Pydantic and YAML support."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = Path.home() / ".config/tracker-agent/config.yaml"


class FreeloConfig(BaseModel):
    """Freelo time-tracking backend credentials and endpoints."""

    email: str = Field(default="", description="Freelo account e-mail")
    api_key: str = Field(default="", description="Freelo API key")
    base_url: str = Field(default="https://api.freelo.io/v1")
    user_agent: str = Field(default="TrackerAgent/1.0 (tracker@agent.io)")
    active_state_id: int = Field(default=1, description="Task state treated as open")
    task_limit: int = Field(default=100, ge=1, le=100)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    @property
    def has_credentials(self) -> bool:
        return bool(self.email and self.api_key)


class MatchingConfig(BaseModel):
    """Context matching configuration."""

    acceptance_threshold: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Confidence above which the candidate item is tracked; unset uses the matcher default",
    )
    ai_mode: str = Field(default="vision", pattern="^(vision|ocr)$")
    model: str = Field(default="claude-haiku-4-5-20251001")
    max_tokens: int = Field(default=500)
    ocr_char_limit: int = Field(default=3000, ge=100)
    heuristic_min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)


class CaptureConfig(BaseModel):
    """Screen capture configuration."""

    max_width: int = Field(default=1920, ge=320, description="Downscale wider screens to this width")
    jpeg_quality: int = Field(default=80, ge=1, le=100)
    all_screens: bool = False


class OcrConfig(BaseModel):
    """Tesseract OCR configuration."""

    language: str = Field(default="eng")
    page_segmentation_mode: int = Field(default=11, ge=0, le=13)
    tesseract_cmd: str | None = Field(default=None, description="Explicit tesseract binary path")
    save_debug: bool = Field(default=False, description="Dump screenshots and OCR text")


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TRACKER_AGENT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Paths
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".local/state/tracker-agent")
    config_dir: Path = Field(default_factory=lambda: Path.home() / ".config/tracker-agent")
    debug_dir: Path = Field(default_factory=lambda: Path.cwd() / "debug_screenshots")

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # Polling
    poll_interval_seconds: int = Field(default=60, ge=1, description="Seconds between ticks")
    tick_timeout_seconds: float = Field(
        default=120.0, gt=0, description="Upper bound for capture + classification per tick"
    )

    # Matcher credentials (absence selects the heuristic matcher)
    claude_api_key: str | None = Field(default=None, description="Claude API key")

    # Sub-configurations
    freelo: FreeloConfig = Field(default_factory=FreeloConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    ocr: OcrConfig = Field(default_factory=OcrConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment wins over values read from the YAML file
        return env_settings, init_settings, file_secret_settings

    @property
    def config_file(self) -> Path:
        """Path to YAML config file."""
        return self.config_dir / "config.yaml"

    @property
    def matcher_api_key(self) -> str | None:
        """Matcher credentials from config or the ANTHROPIC_API_KEY environment variable."""
        return self.claude_api_key or os.environ.get("ANTHROPIC_API_KEY") or None

    def ensure_directories(self) -> None:
        """Create all required directories."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        if self.ocr.save_debug:
            self.debug_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from YAML file, environment variables, and defaults.

        Priority (highest to lowest):
        1. Environment variables (a ``.env`` file in the working directory is honoured)
        2. YAML config file
        3. Default values
        """
        load_dotenv()
        config_path = config_path or DEFAULT_CONFIG_PATH

        yaml_config: dict[str, Any] = {}
        if config_path.exists():
            with open(config_path) as f:
                yaml_config = yaml.safe_load(f) or {}

        return cls(**yaml_config)

    def save(self, config_path: Path | None = None) -> None:
        """Save current configuration to YAML file."""
        config_path = config_path or self.config_file
        config_path.parent.mkdir(parents=True, exist_ok=True)

        # Secrets stay in the environment
        data = self.model_dump(
            exclude={"claude_api_key": True, "freelo": {"api_key"}},
            exclude_none=True,
        )

        for key in ["log_dir", "config_dir", "debug_dir"]:
            if key in data:
                data[key] = str(data[key])

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        os.chmod(config_path, 0o600)


@lru_cache
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config.load()
