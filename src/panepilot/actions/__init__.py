"""Validated input dispatch to tmux panes."""

from .dispatcher import PaneDispatcher, validate_pane_id
from .validation import ALLOWED_KEYS, CommandValidator, RawItem, parse_raw_items

__all__ = [
    "ALLOWED_KEYS",
    "CommandValidator",
    "PaneDispatcher",
    "RawItem",
    "parse_raw_items",
    "validate_pane_id",
]
