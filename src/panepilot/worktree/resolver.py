"""Cached ``vw`` snapshots and launch directory resolution."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from ..errors import ApiError, ErrorCode, build_error
from .models import WorktreeSnapshot, WorktreeStatus, normalize_path, parse_snapshot, resolve_status
from .runner import LIST_TIMEOUT_S, READ_TIMEOUT_S, SWITCH_TIMEOUT_S, VwRunner, WorktreeCommandError

logger = logging.getLogger(__name__)

MAX_CACHE_ENTRIES = 50


@dataclass(slots=True)
class _CacheEntry:
    snapshot: WorktreeSnapshot | None
    at: float


@dataclass(frozen=True, slots=True)
class LaunchCwd:
    """Result of worktree resolution: a directory, nothing to change, or an error."""

    cwd: str | None = None
    error: ApiError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _trimmed(value: str) -> str | None:
    stripped = value.strip()
    return stripped or None


class WorktreeResolver:
    """Fetches ``vw`` snapshots with per-directory caching.

    Plain snapshots are cached for ``cache_ttl_s``. Augmented snapshots
    (``--gh``, with pull request merge data) are fetched at most once per
    ``augmented_interval_s`` and their merge data is laid over plain ones.
    Concurrent requests for the same directory share a single fetch.
    """

    def __init__(
        self,
        runner: VwRunner | None,
        *,
        cache_ttl_s: float = 3.0,
        augmented_interval_s: float = 30.0,
        max_entries: int = MAX_CACHE_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._runner = runner
        self._cache_ttl_s = cache_ttl_s
        self._augmented_interval_s = augmented_interval_s
        self._max_entries = max_entries
        self._clock = clock
        self._plain: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._augmented: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._inflight: dict[tuple[str, bool], asyncio.Task[WorktreeSnapshot | None]] = {}

    @property
    def runner(self) -> VwRunner | None:
        return self._runner

    def invalidate(self, cwd: str) -> None:
        normalized = normalize_path(cwd)
        if normalized is not None:
            self._plain.pop(normalized, None)
            self._augmented.pop(normalized, None)

    async def snapshot(self, cwd: str, *, augmented: bool = False) -> WorktreeSnapshot | None:
        normalized = normalize_path(cwd)
        if normalized is None or self._runner is None:
            return None

        cache = self._augmented if augmented else self._plain
        ttl = self._augmented_interval_s if augmented else self._cache_ttl_s
        cached = cache.get(normalized)
        if cached is not None and self._clock() - cached.at < ttl:
            return self._overlay(normalized, cached.snapshot, augmented)

        key = (normalized, augmented)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(normalized, augmented))
            self._inflight[key] = task
            task.add_done_callback(lambda _done, key=key: self._inflight.pop(key, None))
        snapshot = await asyncio.shield(task)
        return self._overlay(normalized, snapshot, augmented)

    def _overlay(self, cwd: str, snapshot: WorktreeSnapshot | None, augmented: bool) -> WorktreeSnapshot | None:
        if snapshot is None or augmented:
            return snapshot
        enriched = self._augmented.get(cwd)
        if enriched is None or enriched.snapshot is None:
            return snapshot
        return snapshot.with_merge_data(enriched.snapshot)

    async def _fetch_and_store(self, cwd: str, augmented: bool) -> WorktreeSnapshot | None:
        snapshot = await self._fetch(cwd, augmented)
        cache = self._augmented if augmented else self._plain
        cache[cwd] = _CacheEntry(snapshot=snapshot, at=self._clock())
        cache.move_to_end(cwd)
        while len(cache) > self._max_entries:
            cache.popitem(last=False)
        return snapshot

    async def _fetch(self, cwd: str, augmented: bool) -> WorktreeSnapshot | None:
        assert self._runner is not None
        args = ("list", "--json", "--gh") if augmented else ("list", "--json")
        try:
            result = await self._runner.run(*args, cwd=cwd, timeout_s=LIST_TIMEOUT_S)
        except WorktreeCommandError as exc:
            logger.debug("vw list failed", extra={"cwd": cwd, "error": str(exc)})
            return None
        if not result.ok or not result.stdout.strip():
            return None
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.debug("vw list returned invalid JSON", extra={"cwd": cwd})
            return None
        return parse_snapshot(payload)

    async def status(self, cwd: str) -> WorktreeStatus | None:
        """Return the worktree status for ``cwd`` using the cached snapshot."""

        return resolve_status(await self.snapshot(cwd), cwd)

    async def resolve_launch_cwd(
        self,
        session_cwd: str,
        *,
        worktree_path: str | None = None,
        worktree_branch: str | None = None,
        create_if_missing: bool = False,
    ) -> LaunchCwd:
        """Pick the launch directory for a worktree selector.

        With no selector the result carries no cwd. ``create_if_missing``
        switches ``vw`` to the branch when no worktree exists for it yet.
        """

        if not worktree_path and not worktree_branch and not create_if_missing:
            return LaunchCwd()

        snapshot = await self.snapshot(session_cwd)
        if snapshot is None:
            return LaunchCwd(error=build_error(ErrorCode.INVALID_PAYLOAD, "vw worktree snapshot is unavailable"))

        normalized_path = normalize_path(worktree_path) if worktree_path else None
        by_path = snapshot.find_by_path(normalized_path) if normalized_path else None
        if normalized_path and by_path is None:
            return LaunchCwd(
                error=build_error(ErrorCode.INVALID_PAYLOAD, f"worktree path not found: {normalized_path}")
            )

        by_branch = snapshot.find_by_branch(worktree_branch) if worktree_branch else None
        if worktree_branch and by_branch is None and not create_if_missing:
            return LaunchCwd(
                error=build_error(ErrorCode.INVALID_PAYLOAD, f"worktree branch not found: {worktree_branch}")
            )

        if by_path is not None and by_branch is not None and by_path.path != by_branch.path:
            return LaunchCwd(
                error=build_error(
                    ErrorCode.INVALID_PAYLOAD,
                    "worktreePath and worktreeBranch resolved to different worktrees",
                )
            )

        if worktree_branch and by_branch is None and create_if_missing:
            return await self._create_worktree(snapshot, session_cwd, worktree_branch)

        resolved = by_path or by_branch
        return LaunchCwd(cwd=resolved.path if resolved is not None else None)

    async def _create_worktree(self, snapshot: WorktreeSnapshot, session_cwd: str, branch: str) -> LaunchCwd:
        assert self._runner is not None
        repo_root = snapshot.repo_root
        if repo_root is None:
            return LaunchCwd(
                error=build_error(ErrorCode.INVALID_PAYLOAD, "repo root is unavailable for vw worktree creation")
            )

        previous_branch: str | None = None
        try:
            current = await self._runner.run("branch", "--show-current", cwd=repo_root, timeout_s=READ_TIMEOUT_S)
            if current.ok:
                previous_branch = _trimmed(current.stdout)
        except WorktreeCommandError as exc:
            logger.debug("vw branch lookup failed", extra={"repo_root": repo_root, "error": str(exc)})

        try:
            switched = await self._runner.run("switch", branch, cwd=repo_root, timeout_s=SWITCH_TIMEOUT_S)
        except WorktreeCommandError as exc:
            return LaunchCwd(error=build_error(ErrorCode.INVALID_PAYLOAD, f"vw switch failed: {exc}"))
        if not switched.ok:
            message = (switched.stderr or switched.stdout or "vw switch failed").strip()
            return LaunchCwd(error=build_error(ErrorCode.INVALID_PAYLOAD, f"vw switch failed: {message}"))

        self.invalidate(session_cwd)
        self.invalidate(repo_root)

        try:
            located = await self._runner.run("path", branch, cwd=repo_root, timeout_s=READ_TIMEOUT_S)
        except WorktreeCommandError as exc:
            await self._switch_back(repo_root, previous_branch, branch)
            return LaunchCwd(error=build_error(ErrorCode.INVALID_PAYLOAD, f"vw path failed: {exc}"))
        if not located.ok:
            await self._switch_back(repo_root, previous_branch, branch)
            message = (located.stderr or located.stdout or "vw path failed").strip()
            return LaunchCwd(error=build_error(ErrorCode.INVALID_PAYLOAD, f"vw path failed: {message}"))

        path = _trimmed(located.stdout)
        if path is None:
            await self._switch_back(repo_root, previous_branch, branch)
            return LaunchCwd(error=build_error(ErrorCode.INVALID_PAYLOAD, "vw path returned an empty path"))

        logger.info("Created worktree via vw", extra={"branch": branch, "path": path})
        return LaunchCwd(cwd=normalize_path(path))

    async def _switch_back(self, repo_root: str, previous_branch: str | None, branch: str) -> None:
        if not previous_branch or previous_branch == branch:
            return
        try:
            result = await self._runner.run("switch", previous_branch, cwd=repo_root, timeout_s=SWITCH_TIMEOUT_S)
        except WorktreeCommandError as exc:
            logger.warning(
                "Failed to switch back after vw path failure",
                extra={"repo_root": repo_root, "branch": previous_branch, "error": str(exc)},
            )
            return
        if not result.ok:
            logger.warning(
                "Failed to switch back after vw path failure",
                extra={"repo_root": repo_root, "branch": previous_branch, "error": result.stderr.strip()},
            )


__all__ = ["LaunchCwd", "WorktreeResolver"]
