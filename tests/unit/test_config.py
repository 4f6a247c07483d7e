"""Unit tests for engine settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from rundown_engine.config import EngineSettings

_ENV_VARS = (
    "RUNDOWN_STATE_DIR",
    "RUNDOWN_LOG_LEVEL",
    "RUNDOWN_MODULE_LOG_LEVELS",
    "RUNDOWN_COMMAND_TIMEOUT",
)


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_settings_defaults(clean_env: Path) -> None:
    settings = EngineSettings()

    assert settings.state_dir == Path(".claude/rundown")
    assert settings.log_level == "INFO"
    assert settings.command_timeout is None
    assert settings.module_log_levels == {}


def test_settings_paths_are_relative_to_project_root(clean_env: Path) -> None:
    settings = EngineSettings()
    root = Path("/work/project")

    assert settings.runs_dir(root) == root / ".claude" / "rundown" / "runs"
    assert settings.session_file(root) == root / ".claude" / "rundown" / "session.json"


def test_absolute_state_dir_ignores_project_root(clean_env: Path) -> None:
    settings = EngineSettings(state_dir=clean_env / "state")

    assert settings.runs_dir(Path("/elsewhere")) == clean_env / "state" / "runs"


def test_settings_loads_from_dotenv(clean_env: Path) -> None:
    (clean_env / ".env").write_text(
        "\n".join(
            [
                "RUNDOWN_LOG_LEVEL=debug",
                "RUNDOWN_COMMAND_TIMEOUT=30",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = EngineSettings()

    assert settings.log_level == "DEBUG"
    assert settings.command_timeout == 30.0


def test_environment_overrides_dotenv(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (clean_env / ".env").write_text("RUNDOWN_STATE_DIR=from-dotenv\n", encoding="utf-8")
    monkeypatch.setenv("RUNDOWN_STATE_DIR", "from-env")

    assert EngineSettings().state_dir == Path("from-env")


def test_invalid_values_are_rejected(clean_env: Path) -> None:
    with pytest.raises(ValidationError):
        EngineSettings(log_level="LOUD")
    with pytest.raises(ValidationError):
        EngineSettings(command_timeout=0)


def test_module_log_levels_parse_from_json_env(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("RUNDOWN_MODULE_LOG_LEVELS", '{"rundown_engine.state": "warning"}')

    assert EngineSettings().module_log_levels == {"rundown_engine.state": "WARNING"}
    with pytest.raises(ValidationError):
        EngineSettings(module_log_levels={"rundown_engine": "LOUD"})
