"""Side-effect free checks applied to launch requests."""

from __future__ import annotations

import asyncio
import os
from typing import Iterable

from ..actions.validation import contains_control_chars
from ..errors import ApiError, ErrorCode, build_error
from .models import LaunchRequest

MAX_OPTION_LENGTH = 256
MAX_RESUME_SESSION_ID_LENGTH = 256
MAX_RESUME_PANE_ID_LENGTH = 64


def _invalid(message: str) -> ApiError:
    return build_error(ErrorCode.INVALID_PAYLOAD, message)


def normalize_options(options: Iterable[str] | None) -> list[str] | None:
    if options is None:
        return None
    return [option for option in options if option.strip()]


def validate_options(options: list[str] | None) -> ApiError | None:
    if not options:
        return None
    if any(len(option) > MAX_OPTION_LENGTH or contains_control_chars(option) for option in options):
        return _invalid("agent options include an invalid value")
    return None


def validate_request(request: LaunchRequest) -> ApiError | None:
    """Return the first problem with ``request``, checking nothing outside it."""

    if not request.session_name:
        return _invalid("session_name is required")
    if request.window_name and contains_control_chars(request.window_name):
        return _invalid("window_name must not include control characters")

    option_error = validate_options(normalize_options(request.agent_options))
    if option_error is not None:
        return option_error

    session_id = request.resume_session_id
    if session_id and (len(session_id) > MAX_RESUME_SESSION_ID_LENGTH or contains_control_chars(session_id)):
        return _invalid("resume_session_id contains an invalid value")
    pane_id = request.resume_from_pane_id
    if pane_id and (len(pane_id) > MAX_RESUME_PANE_ID_LENGTH or contains_control_chars(pane_id)):
        return _invalid("resume_from_pane_id contains an invalid value")

    if request.cwd and request.has_worktree_selector():
        return _invalid("cwd cannot be combined with worktree_path/worktree_branch/worktree_create_if_missing")
    if request.worktree_create_if_missing and request.worktree_path:
        return _invalid("worktree_path cannot be combined with worktree_create_if_missing")
    if request.worktree_create_if_missing and not request.worktree_branch:
        return _invalid("worktree_branch is required when worktree_create_if_missing is true")
    return None


def _check_directory(path: str) -> ApiError | None:
    if not os.path.exists(path):
        return _invalid("cwd does not exist")
    if not os.path.isdir(path):
        return _invalid("cwd must be a directory")
    return None


async def validate_cwd(path: str | None) -> ApiError | None:
    if not path:
        return None
    return await asyncio.to_thread(_check_directory, path)


__all__ = [
    "MAX_OPTION_LENGTH",
    "normalize_options",
    "validate_cwd",
    "validate_options",
    "validate_request",
]
