"""Request and response models for agent launches."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from ..errors import ApiError

AgentName = Literal["codex", "claude"]
ResumePolicy = Literal["required", "best_effort"]
ResumeSource = Literal["manual", "hook", "process", "history"]
ResumeConfidence = Literal["high", "medium", "low", "none"]
ResumeFailureReason = Literal["not_found", "ambiguous", "unsupported", "invalid_input"]
VerificationStatus = Literal["verified", "mismatch", "timeout"]


class LaunchRequest(BaseModel):
    """Launch an agent in a new window of an existing tmux session."""

    session_name: str = Field(..., description="Target tmux session.")
    agent: AgentName = Field(..., description="Agent CLI to start.")
    request_id: str = Field(..., description="Client token used to de-duplicate retries.")
    window_name: str | None = None
    cwd: str | None = None
    agent_options: list[str] | None = None
    worktree_path: str | None = None
    worktree_branch: str | None = None
    worktree_create_if_missing: bool = False
    resume_session_id: str | None = None
    resume_from_pane_id: str | None = None
    resume_policy: ResumePolicy | None = None

    @field_validator("session_name", "request_id", mode="before")
    @classmethod
    def _strip_required(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator(
        "window_name",
        "cwd",
        "worktree_path",
        "worktree_branch",
        "resume_session_id",
        "resume_from_pane_id",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    def has_worktree_selector(self) -> bool:
        return bool(self.worktree_path or self.worktree_branch or self.worktree_create_if_missing)


@dataclass(frozen=True, slots=True)
class LaunchVerification:
    status: VerificationStatus
    observed_command: str | None
    attempts: int


@dataclass(frozen=True, slots=True)
class LaunchAgentResult:
    session_name: str
    agent: AgentName
    window_id: str
    window_index: int
    window_name: str
    pane_id: str
    launched_command: str
    resolved_options: list[str]
    verification: LaunchVerification


@dataclass(frozen=True, slots=True)
class LaunchRollback:
    """Whether a created window was removed after a failed launch."""

    attempted: bool
    ok: bool
    message: str | None = None

    @classmethod
    def not_needed(cls) -> "LaunchRollback":
        return cls(attempted=False, ok=True)


@dataclass(frozen=True, slots=True)
class LaunchResumeMeta:
    requested: bool
    reused: bool
    session_id: str | None
    source: ResumeSource | None
    confidence: ResumeConfidence
    policy: ResumePolicy | None
    failure_reason: ResumeFailureReason | None = None
    fallback_reason: ResumeFailureReason | None = None


@dataclass(frozen=True, slots=True)
class LaunchCommandResponse:
    ok: bool
    rollback: LaunchRollback
    result: LaunchAgentResult | None = None
    error: ApiError | None = None
    resume: LaunchResumeMeta | None = None

    @classmethod
    def success(cls, result: LaunchAgentResult, rollback: LaunchRollback | None = None) -> "LaunchCommandResponse":
        return cls(ok=True, result=result, rollback=rollback or LaunchRollback.not_needed())

    @classmethod
    def failure(cls, error: ApiError, rollback: LaunchRollback | None = None) -> "LaunchCommandResponse":
        return cls(ok=False, error=error, rollback=rollback or LaunchRollback.not_needed())

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": self.ok}
        if self.ok and self.result is not None:
            payload["result"] = asdict(self.result)
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        payload["rollback"] = {key: value for key, value in asdict(self.rollback).items() if value is not None}
        if self.resume is not None:
            payload["resume"] = {key: value for key, value in asdict(self.resume).items() if value is not None}
        return payload


@dataclass(slots=True)
class PaneDetail:
    """What the resume planner knows about an existing pane."""

    pane_id: str
    agent: AgentName | None = None
    current_path: str | None = None
    pane_pid: int | None = None
    agent_session_id: str | None = None
    last_event_at: float | None = None


__all__ = [
    "AgentName",
    "LaunchAgentResult",
    "LaunchCommandResponse",
    "LaunchRequest",
    "LaunchResumeMeta",
    "LaunchRollback",
    "LaunchVerification",
    "PaneDetail",
    "ResumeConfidence",
    "ResumeFailureReason",
    "ResumePolicy",
    "ResumeSource",
]
