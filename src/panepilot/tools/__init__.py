"""Tool registration for PanePilot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from ..actions import PaneDispatcher, parse_raw_items
from ..config import PanePilotSettings
from ..errors import ActionResult, ErrorCode, build_error, error_result, invalid_payload
from ..launch import LaunchCommandResponse, LaunchRequest, LaunchService
from ..limits import RateLimiter
from ..worktree import WorktreeResolver, resolve_status

logger = logging.getLogger(__name__)

SEND_LIMITER_KEY = "send"
LAUNCH_LIMITER_KEY = "launch"


@dataclass(slots=True)
class ToolHandles:
    send_text: Any
    send_keys: Any
    send_raw: Any
    kill_pane: Any
    kill_window: Any
    launch_agent: Any
    worktree_snapshot: Any
    activity: list[dict[str, Any]]


def register_tools(
    server: FastMCP,
    *,
    settings: PanePilotSettings,
    dispatcher: PaneDispatcher,
    launch_service: LaunchService,
    worktrees: WorktreeResolver,
    send_limiter: RateLimiter | None = None,
) -> ToolHandles:
    """Register PanePilot's MCP tools on the server."""

    activity: list[dict[str, Any]] = []

    def _record(tool: str, pane_id: str | None, result: ActionResult | LaunchCommandResponse) -> None:
        entry: dict[str, Any] = {"tool": tool, "pane_id": pane_id, "ok": result.ok}
        if result.error is not None:
            entry["error_code"] = result.error.code.value
        activity.append(entry)
        del activity[:-50]

    def _rate_limited() -> ActionResult | None:
        if send_limiter is not None and not send_limiter.allow(SEND_LIMITER_KEY):
            return error_result(ErrorCode.RATE_LIMIT, "rate limited")
        return None

    async def _send_text(
        pane_id: str,
        text: str,
        enter: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Type text into a pane, optionally pressing enter afterwards."""

        result = _rate_limited() or await dispatcher.send_text(pane_id, text, enter=enter)
        _record("send_text", pane_id, result)
        _emit_log(
            context,
            "info" if result.ok else "warning",
            "Sent text to pane",
            extra={"pane_id": pane_id, "ok": result.ok, "enter": enter, "length": len(text)},
        )
        return result.to_dict()

    async def _send_keys(
        pane_id: str,
        keys: list[str],
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Send named keys (Enter, Escape, C-a, ...) to a pane."""

        result = _rate_limited() or await dispatcher.send_keys(pane_id, keys)
        _record("send_keys", pane_id, result)
        _emit_log(context, "info", "Sent keys to pane", extra={"pane_id": pane_id, "ok": result.ok, "keys": keys})
        return result.to_dict()

    async def _send_raw(
        pane_id: str,
        items: list[dict[str, Any]],
        unsafe: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Send an ordered mix of text and key items to a pane."""

        try:
            parsed = parse_raw_items(items)
        except ValueError as exc:
            result = invalid_payload(str(exc))
        else:
            result = _rate_limited() or await dispatcher.send_raw(pane_id, parsed, unsafe=unsafe)
        _record("send_raw", pane_id, result)
        _emit_log(
            context,
            "info",
            "Sent raw input to pane",
            extra={"pane_id": pane_id, "ok": result.ok, "items": len(items), "unsafe": unsafe},
        )
        return result.to_dict()

    async def _kill_pane(pane_id: str, context: Context | None = None) -> dict[str, Any]:
        """Terminate the program in a pane and close it."""

        result = await dispatcher.kill_pane(pane_id)
        _record("kill_pane", pane_id, result)
        _emit_log(context, "info", "Killed pane", extra={"pane_id": pane_id, "ok": result.ok})
        return result.to_dict()

    async def _kill_window(pane_id: str, context: Context | None = None) -> dict[str, Any]:
        """Terminate the program in a pane and close the window that holds it."""

        result = await dispatcher.kill_window(pane_id)
        _record("kill_window", pane_id, result)
        _emit_log(context, "info", "Killed window", extra={"pane_id": pane_id, "ok": result.ok})
        return result.to_dict()

    async def _launch_agent(
        session_name: str,
        agent: str,
        request_id: str,
        window_name: str | None = None,
        cwd: str | None = None,
        agent_options: list[str] | None = None,
        worktree_path: str | None = None,
        worktree_branch: str | None = None,
        worktree_create_if_missing: bool = False,
        resume_session_id: str | None = None,
        resume_from_pane_id: str | None = None,
        resume_policy: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Start codex or claude in a new window of a tmux session, or resume it."""

        try:
            request = LaunchRequest(
                session_name=session_name,
                agent=agent,
                request_id=request_id,
                window_name=window_name,
                cwd=cwd,
                agent_options=agent_options,
                worktree_path=worktree_path,
                worktree_branch=worktree_branch,
                worktree_create_if_missing=worktree_create_if_missing,
                resume_session_id=resume_session_id,
                resume_from_pane_id=resume_from_pane_id,
                resume_policy=resume_policy,
            )
        except ValidationError as exc:
            response = LaunchCommandResponse.failure(
                build_error(ErrorCode.INVALID_PAYLOAD, f"invalid launch request: {exc.errors()[0]['msg']}")
            )
        else:
            response = await launch_service.launch(request, limiter_key=LAUNCH_LIMITER_KEY)

        _record("launch_agent", response.result.pane_id if response.result else None, response)
        _emit_log(
            context,
            "info" if response.ok else "warning",
            "Launch agent finished",
            extra={
                "session_name": session_name,
                "agent": agent,
                "ok": response.ok,
                "rollback_attempted": response.rollback.attempted,
            },
        )
        return response.to_dict()

    async def _worktree_snapshot(
        cwd: str,
        augmented: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return the vw worktree snapshot for a directory and the worktree that owns it."""

        snapshot = await worktrees.snapshot(cwd, augmented=augmented)
        status = resolve_status(snapshot, cwd)
        _emit_log(
            context,
            "debug",
            "Fetched worktree snapshot",
            extra={"cwd": cwd, "available": snapshot is not None, "augmented": augmented},
        )
        return {
            "available": snapshot is not None,
            "snapshot": snapshot.to_dict() if snapshot is not None else None,
            "status": status.to_dict() if status is not None else None,
        }

    tool_send_text = server.tool(
        name="send_text",
        description=(
            "Type text into a tmux pane. Destructive shell commands are blocked, even when "
            "split across several calls. Set enter=false to type without submitting."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": f"Text longer than {settings.max_text_length} characters is rejected",
            }
        },
    )(_send_text)

    tool_send_keys = server.tool(
        name="send_keys",
        description="Send named keys such as Enter, Escape, Up or C-l to a tmux pane.",
    )(_send_keys)

    tool_send_raw = server.tool(
        name="send_raw",
        description=(
            "Send an ordered list of {kind: 'text'|'key', value} items to a tmux pane. "
            "unsafe=true allows interrupt keys such as C-c."
        ),
    )(_send_raw)

    tool_kill_pane = server.tool(
        name="kill_pane",
        description="Gracefully stop the program in a pane, then close the pane.",
    )(_kill_pane)

    tool_kill_window = server.tool(
        name="kill_window",
        description="Gracefully stop the program in a pane, then close its window.",
    )(_kill_window)

    tool_launch_agent = server.tool(
        name="launch_agent",
        description=(
            "Launch a codex or claude agent in a new window of an existing tmux session, "
            "optionally inside a vw worktree or resuming a previous agent session. "
            "Retries with the same request_id return the original result."
        ),
    )(_launch_agent)

    tool_worktree_snapshot = server.tool(
        name="worktree_snapshot",
        description="List vw worktrees for a directory and report which one contains it.",
    )(_worktree_snapshot)

    return ToolHandles(
        send_text=tool_send_text,
        send_keys=tool_send_keys,
        send_raw=tool_send_raw,
        kill_pane=tool_kill_pane,
        kill_window=tool_kill_window,
        launch_agent=tool_launch_agent,
        worktree_snapshot=tool_worktree_snapshot,
        activity=activity,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Prefer the MCP context logger when one is attached."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
