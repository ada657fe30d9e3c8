"""Decide whether, and which agent session, a launch should resume."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ..actions.dispatcher import PaneDispatcher
from ..errors import ApiError, ErrorCode, build_error
from ..multiplexer.utils import first_line
from ..process.tree import ProcessTree
from ..worktree.models import normalize_path
from .models import (
    LaunchRequest,
    LaunchResumeMeta,
    PaneDetail,
    ResumeConfidence,
    ResumeFailureReason,
    ResumePolicy,
    ResumeSource,
)

logger = logging.getLogger(__name__)

FIRST_LINE_MAX_BYTES = 64 * 1024

FAILURE_CODES: dict[str, ErrorCode] = {
    "not_found": ErrorCode.NOT_FOUND,
    "ambiguous": ErrorCode.INVALID_PAYLOAD,
    "invalid_input": ErrorCode.INVALID_PAYLOAD,
    "unsupported": ErrorCode.TMUX_UNAVAILABLE,
}


class PaneDirectory(Protocol):
    """Looks up what is known about a pane."""

    async def get_detail(self, pane_id: str) -> PaneDetail | None: ...


@dataclass(frozen=True, slots=True)
class SessionLookup:
    session_id: str | None = None
    source: ResumeSource | None = None
    confidence: ResumeConfidence = "none"
    reason: ResumeFailureReason | None = None

    @property
    def ok(self) -> bool:
        return self.session_id is not None


@dataclass(frozen=True, slots=True)
class _Candidate:
    session_id: str
    score: int


@dataclass(frozen=True, slots=True)
class ResumePlan:
    requested: bool
    policy: ResumePolicy | None = None
    session_id: str | None = None
    meta: LaunchResumeMeta | None = None
    error: ApiError | None = None


def confidence_for(score: int) -> ResumeConfidence:
    if score >= 100:
        return "high"
    if score >= 30:
        return "medium"
    return "low"


def score_by_event_time(mtime: float, last_event_at: float | None) -> int:
    if last_event_at is None:
        return 0
    delta = abs(mtime - last_event_at)
    if delta <= 10 * 60:
        return 30
    if delta <= 30 * 60:
        return 10
    return 0


def choose_best(candidates: list[_Candidate]) -> SessionLookup | _Candidate:
    if not candidates:
        return SessionLookup(reason="not_found")
    ranked = sorted(candidates, key=lambda candidate: candidate.score, reverse=True)
    if len(ranked) > 1 and ranked[0].score == ranked[1].score:
        return SessionLookup(reason="ambiguous")
    return ranked[0]


def read_first_json_line(path: Path) -> dict[str, Any] | None:
    """Parse the first line of a JSONL transcript, reading at most 64 KiB."""

    try:
        with path.open("rb") as handle:
            head = handle.read(FIRST_LINE_MAX_BYTES)
    except OSError:
        return None
    line = head.split(b"\n", 1)[0].rstrip(b"\r")
    if not line:
        return None
    try:
        parsed = json.loads(line.decode("utf-8", errors="replace"))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _session_meta(path: Path) -> dict[str, Any] | None:
    first = read_first_json_line(path)
    if not first or first.get("type") != "session_meta":
        return None
    payload = first.get("payload")
    return payload if isinstance(payload, dict) else None


def claude_project_dirs(cwd: str) -> list[str]:
    primary = cwd.replace("/", "-")
    legacy = cwd.replace("/", "-").replace(".", "-")
    return [primary] if primary == legacy else [primary, legacy]


class PaneSessionResolver:
    """Finds the agent session id behind a pane from hooks or transcripts on disk."""

    def __init__(self, process_tree: ProcessTree, *, home: Path | None = None) -> None:
        self._process_tree = process_tree
        self._home = home

    @property
    def home(self) -> Path:
        return self._home if self._home is not None else Path.home()

    async def resolve(self, pane: PaneDetail, agent: str) -> SessionLookup:
        if pane.agent not in ("codex", "claude"):
            return SessionLookup(reason="unsupported")
        if pane.agent != agent:
            return SessionLookup(reason="invalid_input")
        if pane.agent == "claude":
            hook_id = (pane.agent_session_id or "").strip()
            if hook_id:
                return SessionLookup(session_id=hook_id, source="hook", confidence="high")
            return await asyncio.to_thread(self._claude_from_history, pane)
        return await self._codex_from_open_files(pane)

    def _claude_from_history(self, pane: PaneDetail) -> SessionLookup:
        cwd = normalize_path(pane.current_path)
        if cwd is None:
            return SessionLookup(reason="invalid_input")
        files: set[Path] = set()
        for encoded in claude_project_dirs(cwd):
            project_dir = self.home / ".claude" / "projects" / encoded
            if project_dir.is_dir():
                files.update(path for path in project_dir.glob("*.jsonl") if path.is_file())
        if not files:
            return SessionLookup(reason="not_found")

        candidates: list[_Candidate] = []
        for path in sorted(files):
            session_id = path.stem.strip()
            if not session_id:
                continue
            score = 1
            try:
                score += score_by_event_time(path.stat().st_mtime, pane.last_event_at)
            except OSError:
                pass
            meta = _session_meta(path)
            if meta is not None and normalize_path(str(meta.get("cwd") or "")) == cwd:
                score += 100
            candidates.append(_Candidate(session_id, score))
        return self._lookup(candidates, "history")

    async def _codex_from_open_files(self, pane: PaneDetail) -> SessionLookup:
        if not pane.pane_pid or pane.pane_pid <= 0:
            return SessionLookup(reason="not_found")
        pids = [pane.pane_pid, *(process.pid for process in await self._process_tree.descendants(pane.pane_pid))]
        marker = f"{os.sep}.codex{os.sep}sessions{os.sep}"
        files: set[str] = set()
        for pid in pids:
            for path in await self._process_tree.open_files(pid):
                if path.endswith(".jsonl") and marker in path:
                    files.add(path)
        if not files:
            return SessionLookup(reason="not_found")
        candidates = await asyncio.to_thread(self._score_codex_files, sorted(files), pane)
        return self._lookup(candidates, "process")

    def _score_codex_files(self, files: list[str], pane: PaneDetail) -> list[_Candidate]:
        cwd = normalize_path(pane.current_path)
        best: dict[str, _Candidate] = {}
        for raw_path in files:
            path = Path(raw_path)
            meta = _session_meta(path)
            if meta is None:
                continue
            session_id = str(meta.get("id") or "").strip()
            if not session_id:
                continue
            score = 5
            meta_cwd = normalize_path(str(meta.get("cwd") or ""))
            if meta_cwd and cwd and meta_cwd == cwd:
                score += 100
            try:
                score += score_by_event_time(path.stat().st_mtime, pane.last_event_at)
            except OSError:
                pass
            previous = best.get(session_id)
            if previous is None or score > previous.score:
                best[session_id] = _Candidate(session_id, score)
        return list(best.values())

    @staticmethod
    def _lookup(candidates: list[_Candidate], source: ResumeSource) -> SessionLookup:
        chosen = choose_best(candidates)
        if isinstance(chosen, SessionLookup):
            return chosen
        return SessionLookup(session_id=chosen.session_id, source=source, confidence=confidence_for(chosen.score))


class TmuxPaneDirectory:
    """``PaneDirectory`` that asks tmux about the pane directly."""

    def __init__(self, dispatcher: PaneDispatcher) -> None:
        self._dispatcher = dispatcher

    async def get_detail(self, pane_id: str) -> PaneDetail | None:
        result, error = await self._dispatcher.run(
            "display-message",
            "-p",
            "-t",
            pane_id,
            "#{pane_id}\t#{pane_current_path}\t#{pane_pid}\t#{pane_current_command}",
        )
        if error is not None or result is None:
            return None
        parts = (first_line(result.stdout) or "").split("\t")
        if len(parts) < 4 or not parts[0]:
            return None
        command = parts[3].strip()
        return PaneDetail(
            pane_id=parts[0],
            agent=command if command in ("codex", "claude") else None,
            current_path=parts[1] or None,
            pane_pid=int(parts[2]) if parts[2].isdigit() else None,
        )


def effective_policy(request: LaunchRequest) -> ResumePolicy | None:
    has_manual = bool(request.resume_session_id)
    has_pane = bool(request.resume_from_pane_id)
    if not has_manual and not has_pane:
        return None
    if request.resume_policy:
        return request.resume_policy
    return "required" if has_manual else "best_effort"


def requested_meta(policy: ResumePolicy | None) -> LaunchResumeMeta | None:
    if policy is None:
        return None
    return LaunchResumeMeta(
        requested=True, reused=False, session_id=None, source=None, confidence="none", policy=policy
    )


def unsupported_meta(policy: ResumePolicy | None) -> LaunchResumeMeta:
    return LaunchResumeMeta(
        requested=True,
        reused=False,
        session_id=None,
        source=None,
        confidence="none",
        policy=policy,
        failure_reason="unsupported",
    )


class ResumePlanner:
    """Turns the resume fields of a launch request into a plan.

    Under ``required`` an unresolved session is an error; under
    ``best_effort`` the launch proceeds fresh and the reason is reported.
    """

    def __init__(self, directory: PaneDirectory, resolver: PaneSessionResolver) -> None:
        self._directory = directory
        self._resolver = resolver

    async def plan(self, request: LaunchRequest) -> ResumePlan:
        policy = effective_policy(request)
        if policy is None:
            return ResumePlan(requested=False)

        if request.resume_session_id:
            return ResumePlan(
                requested=True,
                policy=policy,
                session_id=request.resume_session_id,
                meta=LaunchResumeMeta(
                    requested=True,
                    reused=True,
                    session_id=request.resume_session_id,
                    source="manual",
                    confidence="high",
                    policy=policy,
                ),
            )

        assert request.resume_from_pane_id is not None
        pane = await self._directory.get_detail(request.resume_from_pane_id)
        if pane is None:
            lookup = SessionLookup(reason="invalid_input")
        else:
            lookup = await self._resolver.resolve(pane, request.agent)

        if lookup.ok:
            return ResumePlan(
                requested=True,
                policy=policy,
                session_id=lookup.session_id,
                meta=LaunchResumeMeta(
                    requested=True,
                    reused=True,
                    session_id=lookup.session_id,
                    source=lookup.source,
                    confidence=lookup.confidence,
                    policy=policy,
                ),
            )

        reason = lookup.reason or "not_found"
        if policy == "required":
            return ResumePlan(
                requested=True,
                policy=policy,
                meta=LaunchResumeMeta(
                    requested=True,
                    reused=False,
                    session_id=None,
                    source=None,
                    confidence="none",
                    policy=policy,
                    failure_reason=reason,
                ),
                error=build_error(FAILURE_CODES[reason], "failed to resolve resume session from pane"),
            )

        logger.warning(
            "Resume session not resolved; launching fresh",
            extra={"pane_id": request.resume_from_pane_id, "reason": reason},
        )
        return ResumePlan(
            requested=True,
            policy=policy,
            meta=LaunchResumeMeta(
                requested=True,
                reused=False,
                session_id=None,
                source=None,
                confidence="none",
                policy=policy,
                fallback_reason=reason,
            ),
        )


__all__ = [
    "FAILURE_CODES",
    "PaneDirectory",
    "PaneSessionResolver",
    "ResumePlan",
    "ResumePlanner",
    "SessionLookup",
    "TmuxPaneDirectory",
    "claude_project_dirs",
    "confidence_for",
    "effective_policy",
    "read_first_json_line",
    "requested_meta",
    "score_by_event_time",
    "unsupported_meta",
]
