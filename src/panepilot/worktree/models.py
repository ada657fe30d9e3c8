"""Data structures describing ``vw`` worktree snapshots."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, replace
from typing import Any


def normalize_path(value: str | None) -> str | None:
    """Return an absolute path without trailing separators, or ``None``."""

    if not value or not value.strip():
        return None
    resolved = os.path.abspath(os.path.expanduser(value.strip()))
    stripped = resolved.rstrip("/\\")
    return stripped or os.sep


def is_within_path(target: str, root: str) -> bool:
    if target == root:
        return True
    prefix = root if root.endswith(os.sep) else f"{root}{os.sep}"
    return target.startswith(prefix)


@dataclass(frozen=True, slots=True)
class LockState:
    value: bool | None = None
    owner: str | None = None
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class MergeState:
    overall: bool | None = None
    by_pr: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class WorktreeEntry:
    path: str
    branch: str | None = None
    dirty: bool | None = None
    locked: LockState = field(default_factory=LockState)
    merged: MergeState = field(default_factory=MergeState)


@dataclass(frozen=True, slots=True)
class WorktreeSnapshot:
    """Worktrees of one repository, longest path first."""

    repo_root: str | None
    base_branch: str | None
    entries: tuple[WorktreeEntry, ...]

    def find_by_path(self, path: str) -> WorktreeEntry | None:
        normalized = normalize_path(path)
        return next((entry for entry in self.entries if entry.path == normalized), None)

    def find_by_branch(self, branch: str) -> WorktreeEntry | None:
        return next((entry for entry in self.entries if entry.branch == branch), None)

    def with_merge_data(self, source: "WorktreeSnapshot") -> "WorktreeSnapshot":
        """Copy ``merged`` metadata from ``source`` onto entries with the same branch."""

        merged_by_branch = {entry.branch: entry.merged for entry in source.entries if entry.branch}
        if not merged_by_branch:
            return self
        entries = tuple(
            replace(entry, merged=merged_by_branch[entry.branch])
            if entry.branch in merged_by_branch
            else entry
            for entry in self.entries
        )
        return replace(self, entries=entries)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class WorktreeStatus:
    repo_root: str | None
    worktree_path: str
    branch: str | None
    dirty: bool | None
    locked: bool | None
    lock_owner: str | None
    lock_reason: str | None
    merged: bool | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _nullable_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def _nullable_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def parse_snapshot(raw: Any) -> WorktreeSnapshot | None:
    """Parse ``vw list --json`` output; anything off-contract yields ``None``."""

    if not isinstance(raw, dict) or raw.get("status") != "ok":
        return None
    worktrees = raw.get("worktrees")
    if not isinstance(worktrees, list):
        return None

    entries: list[WorktreeEntry] = []
    for item in worktrees:
        if not isinstance(item, dict):
            continue
        path = normalize_path(_nullable_str(item.get("path")))
        if path is None:
            continue
        locked = item.get("locked") if isinstance(item.get("locked"), dict) else {}
        merged = item.get("merged") if isinstance(item.get("merged"), dict) else {}
        by_pr = merged.get("byPR")
        entries.append(
            WorktreeEntry(
                path=path,
                branch=_nullable_str(item.get("branch")),
                dirty=_nullable_bool(item.get("dirty")),
                locked=LockState(
                    value=_nullable_bool(locked.get("value")),
                    owner=_nullable_str(locked.get("owner")),
                    reason=_nullable_str(locked.get("reason")),
                ),
                merged=MergeState(
                    overall=_nullable_bool(merged.get("overall")),
                    by_pr=by_pr if isinstance(by_pr, dict) else None,
                ),
            )
        )
    entries.sort(key=lambda entry: len(entry.path), reverse=True)
    return WorktreeSnapshot(
        repo_root=normalize_path(_nullable_str(raw.get("repoRoot"))),
        base_branch=_nullable_str(raw.get("baseBranch")),
        entries=tuple(entries),
    )


def resolve_status(snapshot: WorktreeSnapshot | None, cwd: str | None) -> WorktreeStatus | None:
    """Match ``cwd`` to the deepest worktree containing it."""

    if snapshot is None:
        return None
    normalized = normalize_path(cwd)
    if normalized is None:
        return None
    matched = next((entry for entry in snapshot.entries if is_within_path(normalized, entry.path)), None)
    if matched is None:
        return None
    return WorktreeStatus(
        repo_root=snapshot.repo_root,
        worktree_path=matched.path,
        branch=matched.branch,
        dirty=matched.dirty,
        locked=matched.locked.value,
        lock_owner=matched.locked.owner,
        lock_reason=matched.locked.reason,
        merged=matched.merged.overall,
    )


__all__ = [
    "LockState",
    "MergeState",
    "WorktreeEntry",
    "WorktreeSnapshot",
    "WorktreeStatus",
    "is_within_path",
    "normalize_path",
    "parse_snapshot",
    "resolve_status",
]
