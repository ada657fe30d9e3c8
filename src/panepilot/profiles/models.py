"""Launch profile models for supported agent CLIs."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator


class AgentLaunchProfile(BaseModel):
    """How to start, and resume, one agent CLI inside a pane."""

    agent: Literal["codex", "claude"] = Field(..., description="Agent this profile applies to.")
    binary: str = Field(..., description="Executable typed into the pane.")
    options: list[str] = Field(
        default_factory=list,
        description="Default CLI options used when a launch request supplies none.",
    )
    resume_style: Literal["subcommand", "flag"] = Field(
        default="subcommand",
        description="'subcommand' appends `resume <id>`, 'flag' appends `--resume <id>`.",
    )

    @field_validator("binary")
    @classmethod
    def _normalize_binary(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Profile binary must not be empty")
        return normalized

    @field_validator("options")
    @classmethod
    def _drop_blank_options(cls, value: list[str]) -> list[str]:
        return [option.strip() for option in value if option.strip()]

    def resume_args(self, session_id: str) -> list[str]:
        if self.resume_style == "flag":
            return ["--resume", session_id]
        return ["resume", session_id]


BUILTIN_PROFILES: dict[str, AgentLaunchProfile] = {
    "codex": AgentLaunchProfile(agent="codex", binary="codex", resume_style="subcommand"),
    "claude": AgentLaunchProfile(agent="claude", binary="claude", resume_style="flag"),
}


__all__ = ["AgentLaunchProfile", "BUILTIN_PROFILES"]
