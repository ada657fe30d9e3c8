from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from panepilot.config import DEFAULT_DANGER_COMMAND_PATTERNS, PanePilotSettings, get_settings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in list(os.environ):
        if key.startswith("PANEPILOT_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults() -> None:
    settings = PanePilotSettings()

    assert settings.multiplexer_backend == "tmux"
    assert settings.enter_key == "C-m"
    assert settings.max_text_length == 2000
    assert settings.danger_keys == ("C-c", "C-d", "C-z")
    assert settings.danger_command_patterns == DEFAULT_DANGER_COMMAND_PATTERNS
    assert settings.launch_idempotency_ttl_s == 60.0
    assert settings.profile_paths == (Path("profiles"),)


def test_env_lists_are_parsed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PANEPILOT_DANGER_KEYS", "C-c, C-\\ ,")
    monkeypatch.setenv("PANEPILOT_DANGER_COMMAND_PATTERNS", "\\bdrop\\s+table\\b\n\n\\bterraform\\s+destroy\\b")
    monkeypatch.setenv("PANEPILOT_PROFILE_PATHS", os.pathsep.join(["/etc/panepilot", "~/profiles"]))

    settings = PanePilotSettings()

    assert settings.danger_keys == ("C-c", "C-\\")
    assert settings.danger_command_patterns == (r"\bdrop\s+table\b", r"\bterraform\s+destroy\b")
    assert settings.profile_paths == (Path("/etc/panepilot"), Path("~/profiles"))


def test_values_are_normalized(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PANEPILOT_LOG_LEVEL", " debug ")
    monkeypatch.setenv("PANEPILOT_MULTIPLEXER_BACKEND", "WezTerm")
    monkeypatch.setenv("PANEPILOT_ENTER_DELAY_MS", "0")

    settings = PanePilotSettings()

    assert settings.log_level == "DEBUG"
    assert settings.multiplexer_backend == "wezterm"
    assert settings.enter_delay_ms == 0


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("PANEPILOT_DANGER_COMMAND_PATTERNS", "rm -rf ("),
        ("PANEPILOT_LOG_LEVEL", "chatty"),
        ("PANEPILOT_MULTIPLEXER_BACKEND", "screen"),
        ("PANEPILOT_MAX_TEXT_LENGTH", "0"),
        ("PANEPILOT_ENTER_DELAY_MS", "-5"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(ValidationError):
        PanePilotSettings()


def test_get_settings_resolves_profile_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PANEPILOT_PROFILE_PATHS", "relative-profiles")

    settings = get_settings()

    assert settings.profile_paths == ((tmp_path / "relative-profiles").resolve(),)
    assert get_settings() is settings
