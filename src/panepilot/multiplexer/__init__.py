"""tmux CLI orchestration utilities."""

from .runner import (
    CommandResult,
    FakeTmuxRunner,
    MultiplexerError,
    MultiplexerNotFoundError,
    MultiplexerTimeoutError,
    TmuxRunner,
)

__all__ = [
    "CommandResult",
    "FakeTmuxRunner",
    "MultiplexerError",
    "MultiplexerNotFoundError",
    "MultiplexerTimeoutError",
    "TmuxRunner",
]
