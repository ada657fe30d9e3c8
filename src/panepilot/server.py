"""FastMCP server bootstrap for PanePilot."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .actions import CommandValidator, PaneDispatcher
from .config import PanePilotSettings, get_settings
from .launch import (
    IdempotencyCache,
    LaunchOrchestrator,
    LaunchService,
    PaneDirectory,
    PaneInterrupter,
    PaneSessionResolver,
    ResumePlanner,
    TmuxPaneDirectory,
)
from .limits import RateLimiter
from .multiplexer import MultiplexerError, MultiplexerNotFoundError, TmuxRunner
from .process import ProcessTree, PsutilProcessTree
from .profiles import ProfileLoadError, ProfileLoader
from .tools import register_tools
from .worktree import VwRunner, WorktreeResolver


def configure_logging(level: str) -> None:
    """Configure root logging for the PanePilot server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_server(
    settings: Optional[PanePilotSettings] = None,
    tmux_runner: TmuxRunner | None = None,
    *,
    vw_runner: VwRunner | None = None,
    process_tree: ProcessTree | None = None,
    pane_directory: PaneDirectory | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FastMCP:
    """Wire the pane and launch services into a FastMCP server."""

    settings = settings or get_settings()

    tmux_metadata: dict[str, object] = {
        "available": False,
        "version": None,
        "error": None,
        "socket": settings.tmux_socket,
    }
    if tmux_runner is None:
        try:
            tmux_runner = TmuxRunner(
                Path(settings.tmux_path) if settings.tmux_path else None,
                socket_name=settings.tmux_socket,
                timeout_s=settings.command_timeout_s,
            )
        except MultiplexerNotFoundError as exc:
            tmux_metadata["error"] = str(exc)
            tmux_runner = None

    if tmux_runner is not None:
        tmux_metadata["available"] = True
        try:
            version_result = _run_sync(tmux_runner.version())
            if version_result.ok:
                tmux_metadata["version"] = version_result.stdout.strip()
            else:
                tmux_metadata["error"] = version_result.stderr.strip() or "tmux -V failed"
        except MultiplexerError as exc:
            tmux_metadata["error"] = str(exc)

    vw_runner = vw_runner or VwRunner(settings.vw_path)
    process_tree = process_tree or PsutilProcessTree()
    profile_loader = ProfileLoader(settings.profile_paths)

    dispatcher = PaneDispatcher.from_settings(
        settings,
        tmux_runner,
        validator=CommandValidator.from_settings(settings),
        sleep=sleep,
        unavailable_reason=str(tmux_metadata["error"] or "tmux is unavailable"),
    )
    worktrees = WorktreeResolver(
        vw_runner,
        cache_ttl_s=settings.worktree_cache_ttl_s,
        augmented_interval_s=settings.worktree_augmented_interval_s,
    )
    orchestrator = LaunchOrchestrator(
        dispatcher,
        worktrees,
        profile_loader,
        interrupter=PaneInterrupter(dispatcher, process_tree, sleep=sleep),
        sleep=sleep,
    )
    planner = ResumePlanner(
        pane_directory or TmuxPaneDirectory(dispatcher),
        PaneSessionResolver(process_tree),
    )
    launch_service = LaunchService(
        orchestrator,
        planner,
        backend=settings.multiplexer_backend,
        limiter=RateLimiter(settings.send_rate_limit_window_s, settings.send_rate_limit_max),
        cache=IdempotencyCache(
            ttl_s=settings.launch_idempotency_ttl_s,
            max_entries=settings.launch_idempotency_max_entries,
        ),
    )

    server = FastMCP(
        name="PanePilot",
        version=__version__,
        instructions=(
            "PanePilot drives tmux panes that run coding agents. Use the send tools to type "
            "into panes, launch_agent to start or resume codex/claude in a session, and "
            "worktree_snapshot to inspect vw worktrees."
        ),
    )

    handles = register_tools(
        server,
        settings=settings,
        dispatcher=dispatcher,
        launch_service=launch_service,
        worktrees=worktrees,
        send_limiter=RateLimiter(settings.send_rate_limit_window_s, settings.send_rate_limit_max),
    )

    def status_payload(context: Context | None = None) -> str:
        """Return a JSON string summarizing basic runtime state."""

        try:
            profiles = profile_loader.load_all()
            profile_summary = {
                agent: {"binary": profile.binary, "options": profile.options}
                for agent, profile in sorted(profiles.items())
            }
            profile_error: str | None = None
        except ProfileLoadError as exc:
            profile_summary = {}
            profile_error = str(exc)

        error_counts: dict[str, int] = {}
        for entry in handles.activity:
            code = entry.get("error_code")
            if code:
                error_counts[code] = error_counts.get(code, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "backend": settings.multiplexer_backend,
            "tmux": tmux_metadata,
            "vw": {"path": vw_runner.executable, "available": vw_runner.available()},
            "profiles": {"agents": profile_summary, "error": profile_error},
            "launch": {"idempotency_entries": len(launch_service.cache)},
            "activity": {
                "recent": handles.activity[-5:],
                "error_counts": error_counts,
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    @server.resource(
        "resource://panepilot/status",
        name="panepilot_status",
        title="PanePilot Status",
        description="Provides the current runtime status for the PanePilot server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        return status_payload(context)

    setattr(server, "profile_loader", profile_loader)
    setattr(server, "tmux_runner", tmux_runner)
    setattr(server, "tmux_metadata", tmux_metadata)
    setattr(server, "dispatcher", dispatcher)
    setattr(server, "worktrees", worktrees)
    setattr(server, "launch_service", launch_service)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_payload", status_payload)
    return server


def main() -> None:
    """Entry point for running the PanePilot server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching PanePilot server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "tmux_available": getattr(server, "tmux_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
