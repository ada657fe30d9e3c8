"""Process tree inspection used to interrupt and identify agent processes."""

from __future__ import annotations

import asyncio
import logging
import signal as signal_module
from dataclasses import dataclass, field
from typing import Iterable, Protocol

import psutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProcessInfo:
    pid: int
    ppid: int
    name: str


class ProcessTree(Protocol):
    """Read and signal the processes below a pane's shell."""

    async def descendants(self, pid: int) -> list[ProcessInfo]: ...

    async def signal(self, pid: int, sig: int) -> bool: ...

    async def open_files(self, pid: int) -> list[str]: ...


def _info(process: psutil.Process) -> ProcessInfo | None:
    try:
        return ProcessInfo(pid=process.pid, ppid=process.ppid(), name=process.name())
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None


class PsutilProcessTree:
    """``ProcessTree`` backed by psutil; blocking calls run in a worker thread."""

    def _collect(self, pid: int) -> list[ProcessInfo]:
        try:
            process = psutil.Process(pid)
            children = process.children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return []
        infos = (_info(child) for child in children)
        return [info for info in infos if info is not None]

    async def descendants(self, pid: int) -> list[ProcessInfo]:
        return await asyncio.to_thread(self._collect, pid)

    def _send(self, pid: int, sig: int) -> bool:
        try:
            psutil.Process(pid).send_signal(sig)
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            logger.warning("Permission denied signalling process", extra={"pid": pid, "signal": sig})
            return False
        return True

    async def signal(self, pid: int, sig: int) -> bool:
        return await asyncio.to_thread(self._send, pid, sig)

    def _files(self, pid: int) -> list[str]:
        try:
            return [entry.path for entry in psutil.Process(pid).open_files()]
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return []

    async def open_files(self, pid: int) -> list[str]:
        return await asyncio.to_thread(self._files, pid)


@dataclass
class FakeProcessTree:
    """In-memory process table for tests.

    ``exit_on`` maps a signal number to the pids that disappear when they
    receive it.
    """

    processes: list[ProcessInfo] = field(default_factory=list)
    files: dict[int, list[str]] = field(default_factory=dict)
    exit_on: dict[int, set[int]] = field(default_factory=dict)
    signals: list[tuple[int, int]] = field(default_factory=list)

    def add(self, pid: int, ppid: int, name: str, *, files: Iterable[str] = ()) -> None:
        self.processes.append(ProcessInfo(pid=pid, ppid=ppid, name=name))
        if files:
            self.files[pid] = list(files)

    def alive(self, pid: int) -> bool:
        return any(process.pid == pid for process in self.processes)

    async def descendants(self, pid: int) -> list[ProcessInfo]:
        found: list[ProcessInfo] = []
        frontier = [pid]
        while frontier:
            parent = frontier.pop()
            for process in self.processes:
                if process.ppid == parent:
                    found.append(process)
                    frontier.append(process.pid)
        return found

    async def signal(self, pid: int, sig: int) -> bool:
        if not self.alive(pid):
            return False
        self.signals.append((pid, sig))
        if pid in self.exit_on.get(sig, set()):
            self.processes = [process for process in self.processes if process.pid != pid]
        return True

    async def open_files(self, pid: int) -> list[str]:
        return list(self.files.get(pid, []))


SIGTERM = int(signal_module.SIGTERM)
SIGKILL = int(getattr(signal_module, "SIGKILL", signal_module.SIGTERM))

__all__ = [
    "FakeProcessTree",
    "ProcessInfo",
    "ProcessTree",
    "PsutilProcessTree",
    "SIGKILL",
    "SIGTERM",
]
