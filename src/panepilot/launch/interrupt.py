"""Stop a running agent in an existing pane so it can be relaunched."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..actions.dispatcher import PaneDispatcher, validate_pane_id
from ..errors import ApiError, ErrorCode, build_error
from ..multiplexer.utils import first_line, is_target_missing
from ..process.tree import SIGKILL, SIGTERM, ProcessInfo, ProcessTree

logger = logging.getLogger(__name__)

PANE_TARGET_FORMAT = "\t".join(
    [
        "#{pane_id}",
        "#{window_id}",
        "#{window_index}",
        "#{window_name}",
        "#{pane_pid}",
        "#{pane_current_path}",
    ]
)


@dataclass(frozen=True, slots=True)
class PaneTarget:
    pane_id: str
    window_id: str
    window_index: int
    window_name: str
    pane_pid: int | None
    current_path: str | None


def _parse_target(line: str) -> PaneTarget | None:
    parts = line.split("\t")
    if len(parts) < 6 or not parts[0] or not parts[1]:
        return None
    try:
        window_index = int(parts[2])
    except ValueError:
        return None
    pane_pid = int(parts[4]) if parts[4].isdigit() else None
    return PaneTarget(
        pane_id=parts[0],
        window_id=parts[1],
        window_index=window_index,
        window_name=parts[3],
        pane_pid=pane_pid,
        current_path=parts[5] or None,
    )


class PaneInterrupter:
    """Terminates an agent running in a pane, escalating from SIGTERM to SIGKILL."""

    def __init__(
        self,
        dispatcher: PaneDispatcher,
        process_tree: ProcessTree,
        *,
        settle_delay_s: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._dispatcher = dispatcher
        self._process_tree = process_tree
        self._settle_delay_s = settle_delay_s
        self._sleep = sleep

    async def resolve_target(self, pane_id: str) -> tuple[PaneTarget | None, ApiError | None]:
        pane_error = validate_pane_id(pane_id)
        if pane_error is not None:
            return None, build_error(ErrorCode.INVALID_PANE, pane_error.message)
        result, error = await self._dispatcher.run("display-message", "-p", "-t", pane_id, PANE_TARGET_FORMAT)
        if error is not None:
            if result is not None and is_target_missing(result.stderr):
                return None, build_error(ErrorCode.INVALID_PANE, f"pane not found: {pane_id}")
            return None, error
        line = first_line(result.stdout) if result is not None else None
        target = _parse_target(line or "")
        if target is None:
            return None, build_error(ErrorCode.INVALID_PANE, f"pane not found: {pane_id}")
        return target, None

    async def foreground_command(self, pane_id: str) -> str | None:
        result, error = await self._dispatcher.run(
            "display-message", "-p", "-t", pane_id, "#{pane_current_command}"
        )
        if error is not None or result is None:
            return None
        return first_line(result.stdout)

    async def _agent_processes(self, pane_pid: int, binary: str) -> list[ProcessInfo]:
        descendants = await self._process_tree.descendants(pane_pid)
        return [process for process in descendants if process.name == binary]

    async def _signal_all(self, processes: list[ProcessInfo], sig: int) -> None:
        for process in processes:
            await self._process_tree.signal(process.pid, sig)

    async def interrupt(self, target: PaneTarget, binary: str) -> ApiError | None:
        """Leave the pane idle, or explain why that was not possible."""

        await self._dispatcher.exit_copy_mode(target.pane_id)
        if await self.foreground_command(target.pane_id) != binary:
            return None
        if target.pane_pid is None:
            return build_error(ErrorCode.INTERNAL, "pane process id is unavailable")

        for sig in (SIGTERM, SIGKILL):
            processes = await self._agent_processes(target.pane_pid, binary)
            if processes:
                await self._signal_all(processes, sig)
            await self._sleep(self._settle_delay_s)
            if await self.foreground_command(target.pane_id) != binary:
                logger.info(
                    "Interrupted agent before relaunch",
                    extra={"pane_id": target.pane_id, "signal": sig, "pids": [p.pid for p in processes]},
                )
                return None

        logger.warning("Agent did not exit before relaunch", extra={"pane_id": target.pane_id})
        return build_error(ErrorCode.INTERNAL, "pane is still busy")


__all__ = ["PANE_TARGET_FORMAT", "PaneInterrupter", "PaneTarget"]
