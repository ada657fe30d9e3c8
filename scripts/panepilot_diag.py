"""PanePilot diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from panepilot.config import PanePilotSettings
from panepilot.multiplexer import MultiplexerError, TmuxRunner
from panepilot.profiles import ProfileLoadError, ProfileLoader
from panepilot.worktree import VwRunner, WorktreeResolver, resolve_status


def load_runner(settings: PanePilotSettings) -> TmuxRunner:
    try:
        return TmuxRunner(
            Path(settings.tmux_path) if settings.tmux_path else None,
            socket_name=settings.tmux_socket,
            timeout_s=settings.command_timeout_s,
        )
    except MultiplexerError as exc:
        print(f"tmux unavailable: {exc}")
        raise SystemExit(1)


def cmd_tmux(args: argparse.Namespace) -> None:
    settings = PanePilotSettings()
    runner = load_runner(settings)
    try:
        result = asyncio.run(runner.version())
    except MultiplexerError as exc:
        print(f"tmux unavailable: {exc}")
        raise SystemExit(1)
    payload = {
        "executable": str(runner.executable),
        "socket": settings.tmux_socket,
        "ok": result.ok,
        "version": result.stdout.strip() or None,
        "stderr": result.stderr.strip() or None,
    }
    print(json.dumps(payload, indent=2))
    if not result.ok:
        raise SystemExit(1)


def cmd_worktrees(args: argparse.Namespace) -> None:
    settings = PanePilotSettings()
    resolver = WorktreeResolver(VwRunner(settings.vw_path))
    cwd = str(Path(args.cwd).expanduser().resolve())
    snapshot = asyncio.run(resolver.snapshot(cwd, augmented=args.augmented))
    if snapshot is None:
        print(f"vw snapshot unavailable for {cwd}")
        raise SystemExit(1)
    status = resolve_status(snapshot, cwd)
    payload = {
        "snapshot": snapshot.to_dict(),
        "status": status.to_dict() if status is not None else None,
    }
    print(json.dumps(payload, indent=2))


def cmd_profiles(args: argparse.Namespace) -> None:
    settings = PanePilotSettings()
    loader = ProfileLoader(settings.profile_paths)
    try:
        profiles = loader.load_all()
    except ProfileLoadError as exc:
        print(f"Profiles invalid: {exc}")
        raise SystemExit(1)
    payload = {agent: profile.model_dump() for agent, profile in sorted(profiles.items())}
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PanePilot diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_tmux = sub.add_parser("tmux", help="Show tmux availability and version")
    p_tmux.set_defaults(func=cmd_tmux)

    p_worktrees = sub.add_parser("worktrees", help="Print the vw worktree snapshot for a directory")
    p_worktrees.add_argument("cwd", help="Directory inside the repository")
    p_worktrees.add_argument("--augmented", action="store_true", help="Include pull request merge data")
    p_worktrees.set_defaults(func=cmd_worktrees)

    p_profiles = sub.add_parser("profiles", help="Show resolved agent launch profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
