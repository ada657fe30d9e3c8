"""Configuration management for PanePilot."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
import os
import re
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_DANGER_COMMAND_PATTERNS: tuple[str, ...] = (
    r"\brm\s+-(?:[a-z]*r[a-z]*f|[a-z]*f[a-z]*r)[a-z]*\b",
    r"\brm\s+--recursive\b",
    r"\bsudo\s+rm\b",
    r"\bmkfs(?:\.[a-z0-9]+)?\b",
    r"\bdd\s+if=",
    r"\b(?:shutdown|reboot|halt|poweroff)\b",
    r":\(\)\s*\{\s*:\|:&\s*\};:",
    r"\bgit\s+push\s+(?:.*\s)?--force\b",
    r"\bgit\s+reset\s+--hard\b",
    r"\bchmod\s+-r\s+777\s+/",
    r">\s*/dev/sd[a-z]\b",
)

DEFAULT_DANGER_KEYS: tuple[str, ...] = ("C-c", "C-d", "C-z")


def _split_list(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class PanePilotSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    tmux_path: str | None = Field(default=None, validation_alias="PANEPILOT_TMUX_PATH")
    tmux_socket: str | None = Field(default=None, validation_alias="PANEPILOT_TMUX_SOCKET")
    multiplexer_backend: str = Field(default="tmux", validation_alias="PANEPILOT_MULTIPLEXER_BACKEND")
    vw_path: str = Field(default="vw", validation_alias="PANEPILOT_VW_PATH")
    command_timeout_s: float = Field(default=5.0, validation_alias="PANEPILOT_COMMAND_TIMEOUT_S")

    max_text_length: int = Field(default=2000, validation_alias="PANEPILOT_MAX_TEXT_LENGTH")
    enter_key: str = Field(default="C-m", validation_alias="PANEPILOT_ENTER_KEY")
    enter_delay_ms: int = Field(default=100, validation_alias="PANEPILOT_ENTER_DELAY_MS")
    danger_keys: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_DANGER_KEYS, validation_alias="PANEPILOT_DANGER_KEYS"
    )
    danger_command_patterns: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_DANGER_COMMAND_PATTERNS,
        validation_alias="PANEPILOT_DANGER_COMMAND_PATTERNS",
    )

    worktree_cache_ttl_s: float = Field(default=3.0, validation_alias="PANEPILOT_WORKTREE_CACHE_TTL_S")
    worktree_augmented_interval_s: float = Field(
        default=30.0, validation_alias="PANEPILOT_WORKTREE_AUGMENTED_INTERVAL_S"
    )

    launch_idempotency_ttl_s: float = 60.0
    launch_idempotency_max_entries: int = 500
    send_rate_limit_window_s: float = Field(
        default=1.0, validation_alias="PANEPILOT_SEND_RATE_LIMIT_WINDOW_S"
    )
    send_rate_limit_max: int = Field(default=10, validation_alias="PANEPILOT_SEND_RATE_LIMIT_MAX")

    profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("profiles"),), validation_alias="PANEPILOT_PROFILE_PATHS"
    )
    log_level: str = Field(default="INFO", validation_alias="PANEPILOT_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "PANEPILOT_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("multiplexer_backend")
    @classmethod
    def _normalize_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"tmux", "wezterm"}:
            raise ValueError("PANEPILOT_MULTIPLEXER_BACKEND must be 'tmux' or 'wezterm'")
        return normalized

    @field_validator("danger_keys", mode="before")
    @classmethod
    def _parse_danger_keys(cls, value):
        if value is None:
            return DEFAULT_DANGER_KEYS
        if isinstance(value, str):
            return tuple(_split_list(value))
        if isinstance(value, (list, tuple)):
            return tuple(str(item) for item in value)
        raise TypeError("PANEPILOT_DANGER_KEYS must be a list or a comma-separated string")

    @field_validator("danger_command_patterns", mode="before")
    @classmethod
    def _parse_danger_patterns(cls, value):
        if value is None:
            return DEFAULT_DANGER_COMMAND_PATTERNS
        if isinstance(value, str):
            # Regexes may contain commas, so the env form is newline separated.
            return tuple(line.strip() for line in value.splitlines() if line.strip())
        if isinstance(value, (list, tuple)):
            return tuple(str(item) for item in value)
        raise TypeError("PANEPILOT_DANGER_COMMAND_PATTERNS must be a list or newline-separated string")

    @field_validator("danger_command_patterns")
    @classmethod
    def _validate_danger_patterns(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid danger command pattern {pattern!r}: {exc}") from exc
        return value

    @field_validator("profile_paths", mode="before")
    @classmethod
    def _parse_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("profiles"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("profiles"),)
        raise TypeError("PANEPILOT_PROFILE_PATHS must be a list of paths or a path-separated string")

    @field_validator("max_text_length", "send_rate_limit_max", "launch_idempotency_max_entries")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be >= 1")
        return value

    @field_validator("enter_delay_ms")
    @classmethod
    def _validate_enter_delay(cls, value: int) -> int:
        if value < 0:
            raise ValueError("PANEPILOT_ENTER_DELAY_MS must be >= 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> PanePilotSettings:
    """Return cached settings instance."""

    settings = PanePilotSettings()
    settings.profile_paths = tuple(path.expanduser().resolve() for path in settings.profile_paths)
    return settings


__all__ = [
    "DEFAULT_DANGER_COMMAND_PATTERNS",
    "DEFAULT_DANGER_KEYS",
    "PanePilotSettings",
    "get_settings",
]
