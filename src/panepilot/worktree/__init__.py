"""Worktree discovery through the ``vw`` CLI."""

from .models import WorktreeEntry, WorktreeSnapshot, WorktreeStatus, normalize_path, parse_snapshot, resolve_status
from .resolver import LaunchCwd, WorktreeResolver
from .runner import FakeVwRunner, VwRunner, WorktreeCommandError

__all__ = [
    "FakeVwRunner",
    "LaunchCwd",
    "VwRunner",
    "WorktreeCommandError",
    "WorktreeEntry",
    "WorktreeResolver",
    "WorktreeSnapshot",
    "WorktreeStatus",
    "normalize_path",
    "parse_snapshot",
    "resolve_status",
]
