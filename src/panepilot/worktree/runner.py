"""Async wrapper around the ``vw`` worktree CLI."""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Callable, Iterable

from ..multiplexer.runner import CommandResult
from ..multiplexer.utils import sanitize_environment

LIST_TIMEOUT_S = 4.0
READ_TIMEOUT_S = 5.0
SWITCH_TIMEOUT_S = 15.0


class WorktreeCommandError(RuntimeError):
    """Raised when ``vw`` cannot be started or does not finish in time."""


class VwRunner:
    """Run ``vw`` sub-commands in a given working directory."""

    def __init__(self, executable: str | Path = "vw") -> None:
        self._executable = str(executable)

    @property
    def executable(self) -> str:
        return self._executable

    def available(self) -> bool:
        return shutil.which(self._executable) is not None

    async def run(self, *args: str, cwd: str, timeout_s: float = READ_TIMEOUT_S) -> CommandResult:
        cmd = [self._executable, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(),
            )
        except (FileNotFoundError, NotADirectoryError, PermissionError) as exc:
            raise WorktreeCommandError(f"failed to start vw: {exc}") from exc
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout_s)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise WorktreeCommandError(f"vw {' '.join(args)} timed out after {timeout_s}s") from exc
        return CommandResult(
            args=tuple(cmd),
            returncode=process.returncode,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )


VwHandler = Callable[[tuple[str, ...], str], "CommandResult | None"]


class FakeVwRunner(VwRunner):
    """Test double recording ``(args, cwd)`` and replaying scripted responses."""

    def __init__(
        self,
        responses: Iterable[CommandResult] | None = None,
        *,
        handler: VwHandler | None = None,
    ) -> None:
        super().__init__("vw")
        self._responses = list(responses or [])
        self._handler = handler
        self.invocations: list[tuple[tuple[str, ...], str]] = []

    def available(self) -> bool:
        return True

    async def run(self, *args: str, cwd: str, timeout_s: float = READ_TIMEOUT_S) -> CommandResult:
        self.invocations.append((tuple(args), cwd))
        if self._handler is not None:
            handled = self._handler(tuple(args), cwd)
            if handled is not None:
                return handled
        if self._responses:
            return self._responses.pop(0)
        return CommandResult(args=tuple(args), returncode=1, stdout="", stderr="no scripted response")


__all__ = [
    "FakeVwRunner",
    "LIST_TIMEOUT_S",
    "READ_TIMEOUT_S",
    "SWITCH_TIMEOUT_S",
    "VwRunner",
    "WorktreeCommandError",
]
