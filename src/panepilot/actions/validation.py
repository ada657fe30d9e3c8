"""Input validation and danger detection for pane actions."""

from __future__ import annotations

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Iterable, Literal, Sequence

from ..config import DEFAULT_DANGER_COMMAND_PATTERNS, DEFAULT_DANGER_KEYS, PanePilotSettings
from ..errors import ApiError, ErrorCode, build_error

logger = logging.getLogger(__name__)

MAX_PENDING_PANES = 500

_ARROWS = ("Up", "Down", "Left", "Right")

ALLOWED_KEYS: frozenset[str] = frozenset(
    [
        "Enter",
        "Escape",
        "Tab",
        "BTab",
        "BSpace",
        "DC",
        "IC",
        "Home",
        "End",
        "PageUp",
        "PageDown",
        "Space",
        *_ARROWS,
        *(f"F{index}" for index in range(1, 13)),
        *(f"C-{chr(code)}" for code in range(ord("a"), ord("z") + 1)),
        *(f"M-{arrow}" for arrow in _ARROWS),
        *(f"C-{arrow}" for arrow in _ARROWS),
        *(f"S-{arrow}" for arrow in _ARROWS),
    ]
)

# Keys that submit or discard the current input line.
LINE_RESET_KEYS: frozenset[str] = frozenset({"Enter", "C-m", "C-j", "C-c", "C-u"})

# Keys that type into the input line, and the text they put there.
TYPED_KEYS: dict[str, str] = {"Space": " ", "Tab": "\t"}

_CONTROL_CHARS_RE = re.compile(r"[\x00\r\n\t]")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class RawItem:
    """One element of a raw send: literal text or a named key."""

    kind: Literal["text", "key"]
    value: str


@dataclass(frozen=True, slots=True)
class Verdict:
    """Validation outcome plus the pending buffer to keep if the send succeeds."""

    error: ApiError | None
    pending: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_text(text: str) -> str:
    return text.replace("\r\n", "\n")


def contains_control_chars(value: str) -> bool:
    """True when ``value`` holds NUL, CR, LF or TAB."""

    return bool(_CONTROL_CHARS_RE.search(value))


def parse_raw_items(items: Iterable[Any]) -> list[RawItem]:
    """Coerce mappings or ``RawItem`` instances into a list of raw items."""

    parsed: list[RawItem] = []
    for item in items:
        if isinstance(item, RawItem):
            parsed.append(item)
            continue
        if not isinstance(item, dict):
            raise ValueError("raw items must be objects with 'kind' and 'value'")
        kind = item.get("kind")
        value = item.get("value")
        if kind not in ("text", "key") or not isinstance(value, str):
            raise ValueError("raw item kind must be 'text' or 'key' with a string value")
        parsed.append(RawItem(kind=kind, value=value))
    return parsed


class CommandValidator:
    """Validates text and key input per pane and tracks unsent text.

    Text typed without a submit is remembered per pane so a destructive
    command split across several sends is still recognized.
    """

    def __init__(
        self,
        *,
        max_text_length: int = 2000,
        danger_keys: Iterable[str] = DEFAULT_DANGER_KEYS,
        danger_patterns: Iterable[str] = DEFAULT_DANGER_COMMAND_PATTERNS,
        max_pending: int = MAX_PENDING_PANES,
    ) -> None:
        self._max_text_length = max_text_length
        self._danger_keys = frozenset(danger_keys)
        self._danger_patterns = [re.compile(pattern, re.IGNORECASE) for pattern in danger_patterns]
        self._max_pending = max_pending
        self._pending: OrderedDict[str, str] = OrderedDict()

    @classmethod
    def from_settings(cls, settings: PanePilotSettings) -> "CommandValidator":
        return cls(
            max_text_length=settings.max_text_length,
            danger_keys=settings.danger_keys,
            danger_patterns=settings.danger_command_patterns,
        )

    @property
    def max_text_length(self) -> int:
        return self._max_text_length

    def pending(self, pane_id: str) -> str:
        return self._pending.get(pane_id, "")

    def clear(self, pane_id: str) -> None:
        self._pending.pop(pane_id, None)

    def commit(self, pane_id: str, pending: str) -> None:
        """Store the buffer left over after a successful send."""

        if not pending:
            self.clear(pane_id)
            return
        self._pending[pane_id] = pending
        self._pending.move_to_end(pane_id)
        while len(self._pending) > self._max_pending:
            self._pending.popitem(last=False)

    def is_dangerous(self, command: str) -> bool:
        collapsed = _WHITESPACE_RE.sub(" ", command)
        return any(pattern.search(collapsed) for pattern in self._danger_patterns)

    def check_text(self, pane_id: str, text: str, *, enter: bool) -> Verdict:
        text = normalize_text(text)
        if not text.strip():
            return Verdict(build_error(ErrorCode.INVALID_PAYLOAD, "text is required"))
        verdict = self._check_fragment(pane_id, self.pending(pane_id), text)
        if not verdict.ok:
            return verdict
        if enter or "\n" in text:
            return Verdict(None, "")
        return verdict

    def check_keys(self, pane_id: str, keys: Sequence[str], *, allow_danger: bool = False) -> Verdict:
        if not keys:
            return Verdict(build_error(ErrorCode.INVALID_PAYLOAD, "keys are required"))
        pending = self.pending(pane_id)
        for key in keys:
            verdict = self._apply_key(pane_id, pending, key, allow_danger=allow_danger)
            if not verdict.ok:
                return verdict
            pending = verdict.pending
        return Verdict(None, pending)

    def check_raw(self, pane_id: str, items: Sequence[RawItem], *, unsafe: bool = False) -> Verdict:
        if not items:
            return Verdict(build_error(ErrorCode.INVALID_PAYLOAD, "items are required"))
        pending = self.pending(pane_id)
        for item in items:
            if item.kind == "key":
                verdict = self._apply_key(pane_id, pending, item.value, allow_danger=unsafe)
                if not verdict.ok:
                    return verdict
                pending = verdict.pending
                continue
            text = normalize_text(item.value)
            if not text:
                return Verdict(build_error(ErrorCode.INVALID_PAYLOAD, "text item is empty"))
            verdict = self._check_fragment(pane_id, pending, text)
            if not verdict.ok:
                return verdict
            pending = "" if "\n" in text else verdict.pending
        return Verdict(None, pending)

    def _check_fragment(self, pane_id: str, pending: str, text: str) -> Verdict:
        candidate = pending + text
        if len(text) > self._max_text_length or len(candidate) > self._max_text_length:
            self.clear(pane_id)
            return Verdict(build_error(ErrorCode.INVALID_PAYLOAD, "text too long"))
        if self.is_dangerous(candidate):
            self.clear(pane_id)
            logger.warning("Blocked dangerous command", extra={"pane_id": pane_id})
            return Verdict(build_error(ErrorCode.DANGEROUS_COMMAND, "dangerous command blocked"))
        return Verdict(None, candidate)

    def _apply_key(self, pane_id: str, pending: str, key: str, *, allow_danger: bool) -> Verdict:
        """Check one key and return the line buffer as it stands after it."""

        error = self._check_key(key, allow_danger=allow_danger)
        if error is not None:
            return Verdict(error)
        if key in LINE_RESET_KEYS:
            return Verdict(None, "")
        if key == "BSpace":
            return Verdict(None, pending[:-1])
        if key in TYPED_KEYS:
            return self._check_fragment(pane_id, pending, TYPED_KEYS[key])
        return Verdict(None, pending)

    def _check_key(self, key: str, *, allow_danger: bool) -> ApiError | None:
        if key not in ALLOWED_KEYS:
            return build_error(ErrorCode.INVALID_PAYLOAD, f"unsupported key: {key}")
        if key in self._danger_keys and not allow_danger:
            return build_error(ErrorCode.DANGEROUS_COMMAND, "dangerous key blocked")
        return None


__all__ = [
    "ALLOWED_KEYS",
    "CommandValidator",
    "LINE_RESET_KEYS",
    "RawItem",
    "TYPED_KEYS",
    "Verdict",
    "contains_control_chars",
    "normalize_text",
    "parse_raw_items",
]
