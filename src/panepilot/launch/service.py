"""Entry point for launch requests: resume planning, rate limit, de-duplication."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from ..errors import ErrorCode, build_error, to_error_message
from ..limits import RateLimiter
from .idempotency import IdempotencyCache, IdempotencyMismatchError, fingerprint
from .models import LaunchCommandResponse, LaunchRequest, LaunchResumeMeta, ResumePolicy
from .orchestrator import LaunchOrchestrator
from .resume import ResumePlanner, effective_policy, requested_meta, unsupported_meta

logger = logging.getLogger(__name__)


def idempotency_payload(request: LaunchRequest, policy: ResumePolicy | None) -> dict[str, Any]:
    """Normalized request fields that must match for a replay to be accepted."""

    return {
        "agent": request.agent,
        "window_name": request.window_name,
        "cwd": request.cwd,
        "agent_options": request.agent_options,
        "worktree_path": request.worktree_path,
        "worktree_branch": request.worktree_branch,
        "worktree_create_if_missing": request.worktree_create_if_missing,
        "resume_session_id": request.resume_session_id,
        "resume_from_pane_id": request.resume_from_pane_id,
        "effective_resume_policy": policy,
    }


def _failure(code: ErrorCode, message: str, resume: LaunchResumeMeta | None) -> LaunchCommandResponse:
    return replace(LaunchCommandResponse.failure(build_error(code, message)), resume=resume)


class LaunchService:
    """Coordinates a launch request end to end.

    Requests sharing ``(session_name, request_id)`` attach to a single
    execution; the resume plan and rate limit are evaluated inside it.
    """

    def __init__(
        self,
        orchestrator: LaunchOrchestrator,
        planner: ResumePlanner,
        *,
        backend: str = "tmux",
        limiter: RateLimiter | None = None,
        cache: IdempotencyCache[LaunchCommandResponse] | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._planner = planner
        self._backend = backend
        self._limiter = limiter
        self._cache: IdempotencyCache[LaunchCommandResponse] = cache or IdempotencyCache()

    @property
    def cache(self) -> IdempotencyCache[LaunchCommandResponse]:
        return self._cache

    async def launch(self, request: LaunchRequest, *, limiter_key: str = "default") -> LaunchCommandResponse:
        policy = effective_policy(request)
        if not request.request_id:
            return _failure(ErrorCode.INVALID_PAYLOAD, "request_id is required", requested_meta(policy))

        key = (request.session_name, request.request_id)
        payload_fingerprint = fingerprint(idempotency_payload(request, policy))
        try:
            return await self._cache.run(
                key, payload_fingerprint, lambda: self._execute(request, policy, limiter_key)
            )
        except IdempotencyMismatchError as exc:
            logger.warning(
                "Rejected launch replay with different payload",
                extra={"session_name": request.session_name, "request_id": request.request_id},
            )
            return _failure(ErrorCode.INVALID_PAYLOAD, str(exc), requested_meta(policy))

    async def _execute(
        self, request: LaunchRequest, policy: ResumePolicy | None, limiter_key: str
    ) -> LaunchCommandResponse:
        resume_meta = requested_meta(policy)
        try:
            plan = await self._planner.plan(request)
            resume_meta = plan.meta

            if plan.requested and self._backend != "tmux":
                return _failure(
                    ErrorCode.TMUX_UNAVAILABLE, "launch-agent requires tmux backend", unsupported_meta(plan.policy)
                )
            if plan.requested and plan.error is not None:
                return replace(LaunchCommandResponse.failure(plan.error), resume=plan.meta)
            if self._limiter is not None and not self._limiter.allow(limiter_key):
                return _failure(ErrorCode.RATE_LIMIT, "rate limited", plan.meta)

            effective = request.model_copy(update={"resume_session_id": plan.session_id})
            response = await self._orchestrator.launch(effective)
            return replace(response, resume=plan.meta) if plan.requested else response
        except Exception as exc:  # noqa: BLE001 - unexpected failures become INTERNAL
            logger.exception("Launch command failed", extra={"session_name": request.session_name})
            return _failure(ErrorCode.INTERNAL, to_error_message(exc, "launch command failed"), resume_meta)


__all__ = ["LaunchService", "idempotency_payload"]
