"""Create a tmux window, start an agent in it, and undo the window on failure."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..actions.dispatcher import PaneDispatcher
from ..errors import ApiError, ErrorCode, build_error, to_error_message
from ..multiplexer.utils import first_line, non_empty_lines
from ..profiles import AgentLaunchProfile, ProfileLoadError, ProfileLoader
from ..shell import build_command_line, cd_prefix
from ..worktree.resolver import WorktreeResolver
from .interrupt import PaneInterrupter
from .models import (
    LaunchAgentResult,
    LaunchCommandResponse,
    LaunchRequest,
    LaunchRollback,
    LaunchVerification,
)
from .validation import normalize_options, validate_cwd, validate_options, validate_request

logger = logging.getLogger(__name__)

VERIFY_ATTEMPTS = 5
VERIFY_INTERVAL_S = 0.2
MAX_WINDOW_SUFFIX = 10_000
NEW_WINDOW_FORMAT = "#{window_id}\t#{window_index}\t#{window_name}\t#{pane_id}"


@dataclass(frozen=True, slots=True)
class CreatedWindow:
    window_id: str
    window_index: int
    window_name: str
    pane_id: str


def build_launch_command(
    profile: AgentLaunchProfile,
    options: list[str],
    *,
    resume_session_id: str | None = None,
    cwd: str | None = None,
) -> str:
    """Shell line that starts (or resumes) the agent, optionally after a ``cd``."""

    args = list(options)
    if resume_session_id:
        args.extend(profile.resume_args(resume_session_id))
    line = build_command_line(profile.binary, args)
    return f"{cd_prefix(cwd)}{line}" if cwd else line


def pick_window_name(existing: set[str], base: str) -> str | None:
    if base not in existing:
        return base
    for suffix in range(2, MAX_WINDOW_SUFFIX + 1):
        candidate = f"{base}-{suffix}"
        if candidate not in existing:
            return candidate
    return None


class LaunchOrchestrator:
    """Runs one launch from validation to verification.

    Once a window exists, every failure path removes it again and reports
    the outcome as a ``LaunchRollback``.
    """

    def __init__(
        self,
        dispatcher: PaneDispatcher,
        worktrees: WorktreeResolver,
        profiles: ProfileLoader,
        *,
        interrupter: PaneInterrupter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        verify_attempts: int = VERIFY_ATTEMPTS,
        verify_interval_s: float = VERIFY_INTERVAL_S,
    ) -> None:
        self._dispatcher = dispatcher
        self._worktrees = worktrees
        self._profiles = profiles
        self._interrupter = interrupter
        self._sleep = sleep
        self._verify_attempts = verify_attempts
        self._verify_interval_s = verify_interval_s

    async def launch(self, request: LaunchRequest) -> LaunchCommandResponse:
        error = validate_request(request)
        if error is not None:
            return LaunchCommandResponse.failure(error)

        try:
            profile = self._profiles.get(request.agent)
        except ProfileLoadError as exc:
            return LaunchCommandResponse.failure(
                build_error(ErrorCode.INTERNAL, to_error_message(exc, "failed to load launch profile"))
            )
        options = normalize_options(request.agent_options)
        if options is None:
            options = list(profile.options)
        error = validate_options(options)
        if error is not None:
            return LaunchCommandResponse.failure(error)

        error = await self._assert_session(request.session_name)
        if error is not None:
            return LaunchCommandResponse.failure(error)

        worktree_cwd: str | None = None
        if request.has_worktree_selector():
            session_cwd, error = await self.session_cwd(request.session_name)
            if error is not None:
                return LaunchCommandResponse.failure(error)
            resolved = await self._worktrees.resolve_launch_cwd(
                session_cwd,
                worktree_path=request.worktree_path,
                worktree_branch=request.worktree_branch,
                create_if_missing=request.worktree_create_if_missing,
            )
            if resolved.error is not None:
                return LaunchCommandResponse.failure(resolved.error)
            worktree_cwd = resolved.cwd

        final_cwd = request.cwd or worktree_cwd
        error = await validate_cwd(final_cwd)
        if error is not None:
            return LaunchCommandResponse.failure(error)

        resume_cwd = final_cwd
        if request.resume_session_id and resume_cwd is None and request.resume_from_pane_id is None:
            resume_cwd, cwd_error = await self.session_cwd(request.session_name)
            if cwd_error is not None:
                logger.warning(
                    "Failed to resolve session cwd for resume",
                    extra={"session_name": request.session_name, "error": cwd_error.message},
                )

        if request.resume_from_pane_id:
            return await self._relaunch_in_pane(request, profile, options, final_cwd)
        return await self._launch_in_new_window(request, profile, options, final_cwd, resume_cwd)

    async def _assert_session(self, session_name: str) -> ApiError | None:
        _, error = await self._dispatcher.run("has-session", "-t", session_name)
        if error is None:
            return None
        if error.code is ErrorCode.TMUX_UNAVAILABLE:
            return error
        return build_error(ErrorCode.NOT_FOUND, f"session not found: {session_name}")

    async def session_cwd(self, session_name: str) -> tuple[str | None, ApiError | None]:
        """Current directory of the session's first pane."""

        result, error = await self._dispatcher.run("list-panes", "-t", session_name, "-F", "#{pane_current_path}")
        if error is not None:
            if error.code is ErrorCode.TMUX_UNAVAILABLE:
                return None, error
            return None, build_error(ErrorCode.INTERNAL, error.message or "failed to inspect session pane cwd")
        path = first_line(result.stdout) if result is not None else None
        if path is None:
            return None, build_error(ErrorCode.INVALID_PAYLOAD, "failed to resolve session current path")
        return path, None

    async def _unique_window_name(self, session_name: str, base: str) -> tuple[str | None, ApiError | None]:
        result, error = await self._dispatcher.run("list-windows", "-t", session_name, "-F", "#{window_name}")
        if error is not None:
            return None, error
        existing = set(non_empty_lines(result.stdout if result is not None else ""))
        name = pick_window_name(existing, base)
        if name is None:
            return None, build_error(ErrorCode.INTERNAL, "failed to resolve unique window name")
        return name, None

    async def _create_window(
        self, session_name: str, window_name: str, cwd: str | None
    ) -> tuple[CreatedWindow | None, ApiError | None]:
        args = ["new-window", "-d", "-P", "-F", NEW_WINDOW_FORMAT, "-t", session_name, "-n", window_name]
        if cwd:
            args.extend(["-c", cwd])
        result, error = await self._dispatcher.run(*args)
        if error is not None:
            return None, error
        parts = (first_line(result.stdout) or "").split("\t") if result is not None else []
        if len(parts) < 4 or not all(parts[:4]):
            return None, build_error(ErrorCode.INTERNAL, "unexpected tmux new-window output")
        try:
            window_index = int(parts[1])
        except ValueError:
            return None, build_error(ErrorCode.INTERNAL, "invalid tmux window index")
        return CreatedWindow(parts[0], window_index, parts[2], parts[3]), None

    async def verify(self, pane_id: str, binary: str) -> LaunchVerification:
        """Poll the pane's foreground command until it shows the agent."""

        observed: str | None = None
        for attempt in range(1, self._verify_attempts + 1):
            result, error = await self._dispatcher.run(
                "display-message", "-p", "-t", pane_id, "#{pane_current_command}"
            )
            if error is None and result is not None:
                observed = first_line(result.stdout)
                if observed == binary:
                    return LaunchVerification(status="verified", observed_command=observed, attempts=attempt)
            if attempt < self._verify_attempts:
                await self._sleep(self._verify_interval_s)
        if observed:
            return LaunchVerification(status="mismatch", observed_command=observed, attempts=self._verify_attempts)
        return LaunchVerification(status="timeout", observed_command=None, attempts=self._verify_attempts)

    async def rollback(self, window_id: str) -> LaunchRollback:
        try:
            outcome = await self._dispatcher.kill_window_id(window_id)
        except Exception as exc:  # noqa: BLE001 - compensation reports instead of raising
            return LaunchRollback(
                attempted=True, ok=False, message=to_error_message(exc, "failed to rollback created window")
            )
        if outcome.ok:
            return LaunchRollback(attempted=True, ok=True)
        message = outcome.error.message if outcome.error else ""
        logger.warning("Rollback of created window failed", extra={"window_id": window_id, "error": message})
        return LaunchRollback(attempted=True, ok=False, message=message or "failed to rollback created window")

    async def _launch_in_new_window(
        self,
        request: LaunchRequest,
        profile: AgentLaunchProfile,
        options: list[str],
        final_cwd: str | None,
        resume_cwd: str | None,
    ) -> LaunchCommandResponse:
        window_name, error = await self._unique_window_name(
            request.session_name, request.window_name or f"{request.agent}-work"
        )
        if error is not None:
            return LaunchCommandResponse.failure(error)

        window_cwd = final_cwd or (resume_cwd if request.resume_session_id else None)
        created, error = await self._create_window(request.session_name, window_name, window_cwd)
        if error is not None:
            return LaunchCommandResponse.failure(error)
        assert created is not None

        try:
            prefix_cwd = resume_cwd if request.resume_session_id and resume_cwd != window_cwd else None
            command = build_launch_command(
                profile, options, resume_session_id=request.resume_session_id, cwd=prefix_cwd
            )
            error = await self._dispatcher.type_line(created.pane_id, command)
            if error is not None:
                rollback = await self.rollback(created.window_id)
                return LaunchCommandResponse.failure(error, rollback)
            verification = await self.verify(created.pane_id, profile.binary)
        except Exception as exc:  # noqa: BLE001 - never leak a created window
            logger.exception("Launch failed after window creation", extra={"window_id": created.window_id})
            rollback = await self.rollback(created.window_id)
            return LaunchCommandResponse.failure(
                build_error(ErrorCode.INTERNAL, to_error_message(exc, "launch command failed")), rollback
            )

        logger.info(
            "Launched agent",
            extra={
                "session_name": request.session_name,
                "agent": request.agent,
                "window_id": created.window_id,
                "pane_id": created.pane_id,
                "verification": verification.status,
            },
        )
        return LaunchCommandResponse.success(
            LaunchAgentResult(
                session_name=request.session_name,
                agent=request.agent,
                window_id=created.window_id,
                window_index=created.window_index,
                window_name=created.window_name,
                pane_id=created.pane_id,
                launched_command=command,
                resolved_options=options,
                verification=verification,
            )
        )

    async def _relaunch_in_pane(
        self,
        request: LaunchRequest,
        profile: AgentLaunchProfile,
        options: list[str],
        final_cwd: str | None,
    ) -> LaunchCommandResponse:
        if self._interrupter is None:
            return LaunchCommandResponse.failure(
                build_error(ErrorCode.INTERNAL, "pane relaunch is not configured")
            )
        assert request.resume_from_pane_id is not None
        target, error = await self._interrupter.resolve_target(request.resume_from_pane_id)
        if error is not None:
            return LaunchCommandResponse.failure(error)
        assert target is not None

        error = await self._interrupter.interrupt(target, profile.binary)
        if error is not None:
            return LaunchCommandResponse.failure(error)

        command = build_launch_command(
            profile,
            options,
            resume_session_id=request.resume_session_id,
            cwd=final_cwd or target.current_path,
        )
        error = await self._dispatcher.write_literal(target.pane_id, command)
        if error is None:
            error = await self._dispatcher.send_enter(target.pane_id)
        if error is not None:
            logger.warning(
                "Relaunch send failed after interrupt",
                extra={"pane_id": target.pane_id, "window_id": target.window_id, "error": error.message},
            )
            return LaunchCommandResponse.failure(error)

        verification = await self.verify(target.pane_id, profile.binary)
        return LaunchCommandResponse.success(
            LaunchAgentResult(
                session_name=request.session_name,
                agent=request.agent,
                window_id=target.window_id,
                window_index=target.window_index,
                window_name=target.window_name,
                pane_id=target.pane_id,
                launched_command=command,
                resolved_options=options,
                verification=verification,
            )
        )


__all__ = ["CreatedWindow", "LaunchOrchestrator", "build_launch_command", "pick_window_name"]
