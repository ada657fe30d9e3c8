"""Translate pane actions into ordered tmux invocations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from ..config import PanePilotSettings
from ..errors import ActionResult, ApiError, ErrorCode, build_error, ok_result, to_error_message
from ..multiplexer.runner import CommandResult, MultiplexerError, MultiplexerNotFoundError, TmuxRunner
from ..multiplexer.utils import first_line, is_target_missing, looks_like_pane_id
from .validation import CommandValidator, RawItem

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

BRACKETED_PASTE_START = "\x1b[200~"
BRACKETED_PASTE_END = "\x1b[201~"
TERMINATE_STEP_DELAY_S = 0.12


def bracket_if_multiline(text: str) -> str:
    if "\n" in text:
        return f"{BRACKETED_PASTE_START}{text}{BRACKETED_PASTE_END}"
    return text


def validate_pane_id(pane_id: str) -> ApiError | None:
    if not pane_id or not pane_id.strip():
        return build_error(ErrorCode.INVALID_PAYLOAD, "pane id is required")
    if not looks_like_pane_id(pane_id.strip()):
        return build_error(ErrorCode.INVALID_PANE, f"invalid pane id: {pane_id}")
    return None


class PaneDispatcher:
    """Runs validated input against tmux panes.

    A ``runner`` of ``None`` means tmux is not installed; every action then
    reports ``TMUX_UNAVAILABLE``.
    """

    def __init__(
        self,
        runner: TmuxRunner | None,
        validator: CommandValidator | None = None,
        *,
        enter_key: str = "C-m",
        enter_delay_ms: int = 100,
        sleep: Sleep = asyncio.sleep,
        unavailable_reason: str = "tmux is unavailable",
    ) -> None:
        self._runner = runner
        self._validator = validator or CommandValidator()
        self._enter_key = enter_key
        self._enter_delay_s = enter_delay_ms / 1000.0
        self._sleep = sleep
        self._unavailable_reason = unavailable_reason

    @classmethod
    def from_settings(
        cls,
        settings: PanePilotSettings,
        runner: TmuxRunner | None,
        *,
        validator: CommandValidator | None = None,
        sleep: Sleep = asyncio.sleep,
        unavailable_reason: str = "tmux is unavailable",
    ) -> "PaneDispatcher":
        return cls(
            runner,
            validator or CommandValidator.from_settings(settings),
            enter_key=settings.enter_key,
            enter_delay_ms=settings.enter_delay_ms,
            sleep=sleep,
            unavailable_reason=unavailable_reason,
        )

    @property
    def validator(self) -> CommandValidator:
        return self._validator

    @property
    def runner(self) -> TmuxRunner | None:
        return self._runner

    async def run(self, *args: str) -> tuple[CommandResult | None, ApiError | None]:
        """Invoke tmux, converting every failure into an ``ApiError``."""

        if self._runner is None:
            return None, build_error(ErrorCode.TMUX_UNAVAILABLE, self._unavailable_reason)
        try:
            result = await self._runner.run(*args)
        except MultiplexerNotFoundError as exc:
            return None, build_error(ErrorCode.TMUX_UNAVAILABLE, to_error_message(exc, "tmux is unavailable"))
        except MultiplexerError as exc:
            return None, build_error(ErrorCode.INTERNAL, to_error_message(exc, "tmux command failed"))
        except Exception as exc:  # noqa: BLE001 - runner failures become API errors
            logger.exception("Unexpected tmux runner failure", extra={"command": args[:1]})
            return None, build_error(ErrorCode.INTERNAL, to_error_message(exc, "tmux command failed"))
        if not result.ok:
            message = result.stderr.strip() or f"tmux {args[0]} failed with exit code {result.returncode}"
            return result, build_error(ErrorCode.INTERNAL, message)
        return result, None

    async def exit_copy_mode(self, pane_id: str) -> None:
        _, error = await self.run(
            "if-shell",
            "-t",
            pane_id,
            '[ "#{pane_in_mode}" = "1" ]',
            f"copy-mode -q -t {pane_id}",
        )
        if error is not None:
            logger.debug("Copy-mode exit failed", extra={"pane_id": pane_id, "error": error.message})

    async def write_literal(self, pane_id: str, text: str) -> ApiError | None:
        _, error = await self.run("send-keys", "-l", "-t", pane_id, "--", bracket_if_multiline(text))
        return error

    async def send_enter(self, pane_id: str) -> ApiError | None:
        if self._enter_delay_s > 0:
            await self._sleep(self._enter_delay_s)
        _, error = await self.run("send-keys", "-t", pane_id, self._enter_key)
        return error

    async def type_line(self, pane_id: str, line: str, *, enter: bool = True) -> ApiError | None:
        """Exit copy mode, type ``line`` literally and optionally submit it."""

        await self.exit_copy_mode(pane_id)
        error = await self.write_literal(pane_id, line)
        if error is not None:
            return error
        if enter:
            return await self.send_enter(pane_id)
        return None

    async def send_text(self, pane_id: str, text: str, *, enter: bool = True) -> ActionResult:
        pane_error = validate_pane_id(pane_id)
        if pane_error is not None:
            return ActionResult(ok=False, error=pane_error)
        verdict = self._validator.check_text(pane_id, text, enter=enter)
        if verdict.error is not None:
            return ActionResult(ok=False, error=verdict.error)

        await self.exit_copy_mode(pane_id)
        error = await self.write_literal(pane_id, text.replace("\r\n", "\n"))
        if error is not None:
            return ActionResult(ok=False, error=error)
        self._validator.commit(pane_id, verdict.pending)
        if enter:
            error = await self.send_enter(pane_id)
            if error is not None:
                return ActionResult(ok=False, error=error)
        return ok_result()

    async def send_keys(self, pane_id: str, keys: Sequence[str]) -> ActionResult:
        pane_error = validate_pane_id(pane_id)
        if pane_error is not None:
            return ActionResult(ok=False, error=pane_error)
        verdict = self._validator.check_keys(pane_id, keys)
        if verdict.error is not None:
            return ActionResult(ok=False, error=verdict.error)

        await self.exit_copy_mode(pane_id)
        _, error = await self.run("send-keys", "-t", pane_id, *keys)
        if error is not None:
            return ActionResult(ok=False, error=error)
        self._validator.commit(pane_id, verdict.pending)
        return ok_result()

    async def send_raw(self, pane_id: str, items: Sequence[RawItem], *, unsafe: bool = False) -> ActionResult:
        pane_error = validate_pane_id(pane_id)
        if pane_error is not None:
            return ActionResult(ok=False, error=pane_error)
        verdict = self._validator.check_raw(pane_id, items, unsafe=unsafe)
        if verdict.error is not None:
            return ActionResult(ok=False, error=verdict.error)

        await self.exit_copy_mode(pane_id)
        for item in items:
            if item.kind == "text":
                error = await self.write_literal(pane_id, item.value.replace("\r\n", "\n"))
            else:
                _, error = await self.run("send-keys", "-t", pane_id, item.value)
            if error is not None:
                self._validator.clear(pane_id)
                return ActionResult(ok=False, error=error)
        self._validator.commit(pane_id, verdict.pending)
        return ok_result()

    async def graceful_terminate(self, pane_id: str) -> None:
        """Ask the foreground program to stop before the pane is destroyed."""

        await self.exit_copy_mode(pane_id)
        await self.run("send-keys", "-t", pane_id, "C-c")
        await self._sleep(TERMINATE_STEP_DELAY_S)
        error = await self.write_literal(pane_id, "exit")
        if error is None:
            await self.run("send-keys", "-t", pane_id, self._enter_key)
        await self._sleep(TERMINATE_STEP_DELAY_S)

    async def kill_pane(self, pane_id: str) -> ActionResult:
        pane_error = validate_pane_id(pane_id)
        if pane_error is not None:
            return ActionResult(ok=False, error=pane_error)
        await self.graceful_terminate(pane_id)
        result, error = await self.run("kill-pane", "-t", pane_id)
        if error is not None and not _target_gone(result, error):
            return ActionResult(ok=False, error=error)
        self._validator.clear(pane_id)
        logger.info("Killed pane", extra={"pane_id": pane_id})
        return ok_result()

    async def kill_window(self, pane_id: str) -> ActionResult:
        pane_error = validate_pane_id(pane_id)
        if pane_error is not None:
            return ActionResult(ok=False, error=pane_error)
        result, error = await self.run("list-panes", "-t", pane_id, "-F", "#{window_id}")
        if error is not None:
            if _target_gone(result, error):
                self._validator.clear(pane_id)
                return ok_result()
            return ActionResult(ok=False, error=error)
        window_id = first_line(result.stdout) if result is not None else None
        if window_id is None:
            return ActionResult(
                ok=False, error=build_error(ErrorCode.INTERNAL, "failed to resolve window for pane")
            )
        await self.graceful_terminate(pane_id)
        outcome = await self.kill_window_id(window_id)
        if outcome.ok:
            self._validator.clear(pane_id)
        return outcome

    async def kill_window_id(self, window_id: str) -> ActionResult:
        result, error = await self.run("kill-window", "-t", window_id)
        if error is not None and not _target_gone(result, error):
            return ActionResult(ok=False, error=error)
        return ok_result()

    async def clear_pane_title(self, pane_id: str) -> ActionResult:
        pane_error = validate_pane_id(pane_id)
        if pane_error is not None:
            return ActionResult(ok=False, error=pane_error)
        _, error = await self.run("select-pane", "-t", pane_id, "-T", "")
        if error is not None:
            return ActionResult(ok=False, error=error)
        return ok_result()


def _target_gone(result: CommandResult | None, error: ApiError) -> bool:
    if result is None:
        return False
    return is_target_missing(result.stderr) or is_target_missing(error.message)


__all__ = [
    "BRACKETED_PASTE_END",
    "BRACKETED_PASTE_START",
    "PaneDispatcher",
    "bracket_if_multiline",
    "validate_pane_id",
]
