"""Async runner for the tmux CLI."""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from .utils import sanitize_environment


class MultiplexerError(RuntimeError):
    """Base class for multiplexer runner errors."""


class MultiplexerNotFoundError(MultiplexerError):
    """Raised when the tmux executable cannot be located."""


class MultiplexerTimeoutError(MultiplexerError):
    """Raised when a tmux invocation exceeds its timeout."""


@dataclass(slots=True)
class CommandResult:
    """Holds the outcome of a multiplexer CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class TmuxRunner:
    """Execute tmux commands asynchronously, one subprocess per call."""

    def __init__(
        self,
        executable: Path | None = None,
        *,
        socket_name: str | None = None,
        timeout_s: float = 5.0,
    ) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._socket_name = socket_name
        self._timeout_s = timeout_s

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise MultiplexerNotFoundError(f"tmux executable not found at {candidate}")

        binary = shutil.which("tmux")
        if binary is None:
            raise MultiplexerNotFoundError("tmux executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> CommandResult:
        return await self.run("-V")

    async def run(self, *args: str) -> CommandResult:
        prefix: list[str] = ["-L", self._socket_name] if self._socket_name else []
        cmd = [str(self._executable_path), *prefix, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(),
            )
        except FileNotFoundError as exc:
            raise MultiplexerNotFoundError(str(exc)) from exc
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout_s
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise MultiplexerTimeoutError(
                f"tmux {args[0] if args else ''} timed out after {self._timeout_s}s"
            ) from exc
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return CommandResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


ResponseHandler = Callable[[tuple[str, ...]], "CommandResult | None"]


class FakeTmuxRunner(TmuxRunner):
    """Test double that records tmux invocations and replays scripted responses.

    ``handler`` is consulted first; when it returns ``None`` the next queued
    response is used, and an empty queue yields a successful empty result.
    """

    def __init__(  # type: ignore[override]
        self,
        responses: Iterable[CommandResult] | None = None,
        *,
        handler: ResponseHandler | None = None,
    ) -> None:
        self._responses = list(responses or [])
        self._handler = handler
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-tmux")
        self._socket_name = None
        self._timeout_s = 0.0

    async def run(self, *args: str) -> CommandResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._handler is not None:
            handled = self._handler(tuple(args))
            if handled is not None:
                return handled
        if self._responses:
            return self._responses.pop(0)
        return CommandResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    def commands(self) -> list[str]:
        """Return the tmux sub-command of every recorded invocation."""

        return [invocation[0] for invocation in self._invocations if invocation]

