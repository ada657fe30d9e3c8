"""Utility helpers for the multiplexer runner."""

from __future__ import annotations

import os
import re
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

_TARGET_MISSING_RE = re.compile(
    r"can't find pane|can't find window|no such pane|no such window|invalid pane|invalid window",
    re.IGNORECASE,
)

_PANE_ID_RE = re.compile(r"^%\d+$")


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def is_target_missing(message: str) -> bool:
    """True when tmux stderr says the pane or window no longer exists."""

    return bool(_TARGET_MISSING_RE.search(message or ""))


def looks_like_pane_id(value: str) -> bool:
    return bool(_PANE_ID_RE.match(value))


def first_line(output: str) -> str | None:
    for line in output.splitlines():
        stripped = line.strip()
        if stripped:
            return stripped
    return None


def non_empty_lines(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]
