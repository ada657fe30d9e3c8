"""Structured shell command construction.

Every value that ends up on an interactive shell line goes through
:func:`quote_token`; callers never concatenate unquoted user input.
"""

from __future__ import annotations

import shlex
from typing import Iterable


def quote_token(value: str) -> str:
    """Quote ``value`` so a POSIX shell reads it back as a single word."""

    return shlex.quote(value)


def build_command_line(binary: str, args: Iterable[str] = ()) -> str:
    """Join a binary and its arguments into one shell-safe command line."""

    return " ".join(quote_token(token) for token in [binary, *args])


def cd_prefix(cwd: str) -> str:
    return f"cd {quote_token(cwd)} && "


__all__ = ["build_command_line", "cd_prefix", "quote_token"]
