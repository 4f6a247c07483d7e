"""Configuration for the workflow engine.

Configuration is loaded from:
- environment variables (prefixed with `RUNDOWN_`)
- and a local `.env` file (if present)

Stores never read settings themselves; they receive explicit paths. Settings
only decide *where* those paths point for a given project root.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings for the engine.

    Environment variables:
    - RUNDOWN_STATE_DIR        (optional)
    - RUNDOWN_LOG_LEVEL        (optional)
    - RUNDOWN_MODULE_LOG_LEVELS (optional, JSON object: logger name -> level)
    - RUNDOWN_COMMAND_TIMEOUT  (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    state_dir: Path = Field(
        default=Path(".claude/rundown"),
        description="Directory (relative to the project root) holding run records and the session file",
    )

    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )

    module_log_levels: dict[str, str] = Field(
        default_factory=dict,
        description="Per-logger level overrides, e.g. {\"rundown_engine.state\": \"WARNING\"}",
    )

    command_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Timeout in seconds for step shell commands (None = wait indefinitely)",
    )

    model_config = SettingsConfigDict(
        env_prefix="RUNDOWN_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        return _normalize_level(value)

    @field_validator("module_log_levels")
    @classmethod
    def _known_module_levels(cls, value: dict[str, str]) -> dict[str, str]:
        return {name: _normalize_level(level) for name, level in value.items()}

    def state_root(self, project_root: Path) -> Path:
        if self.state_dir.is_absolute():
            return self.state_dir
        return project_root / self.state_dir

    def runs_dir(self, project_root: Path) -> Path:
        """Directory where one JSON record per workflow run is persisted."""

        return self.state_root(project_root) / "runs"

    def session_file(self, project_root: Path) -> Path:
        """Path of the per-project session (workflow stacks + stash slot)."""

        return self.state_root(project_root) / "session.json"


def _normalize_level(value: str) -> str:
    level = value.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Unknown log level: {value!r}")
    return level
