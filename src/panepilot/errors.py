"""Error codes and action results shared by pane and launch operations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Closed set of error codes returned to callers."""

    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    DANGEROUS_COMMAND = "DANGEROUS_COMMAND"
    NOT_FOUND = "NOT_FOUND"
    TMUX_UNAVAILABLE = "TMUX_UNAVAILABLE"
    INVALID_PANE = "INVALID_PANE"
    INTERNAL = "INTERNAL"
    RATE_LIMIT = "RATE_LIMIT"


@dataclass(frozen=True, slots=True)
class ApiError:
    """A coded error with a human-readable message."""

    code: ErrorCode
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code.value, "message": self.message}


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Outcome of a pane action: ``ok`` or a single error."""

    ok: bool
    error: ApiError | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True}
        assert self.error is not None
        return {"ok": False, "error": self.error.to_dict()}


def build_error(code: ErrorCode, message: str) -> ApiError:
    return ApiError(code=code, message=message)


def ok_result() -> ActionResult:
    return ActionResult(ok=True)


def error_result(code: ErrorCode, message: str) -> ActionResult:
    return ActionResult(ok=False, error=build_error(code, message))


def invalid_payload(message: str) -> ActionResult:
    return error_result(ErrorCode.INVALID_PAYLOAD, message)


def internal_error(message: str) -> ActionResult:
    return error_result(ErrorCode.INTERNAL, message)


def to_error_message(exc: BaseException, fallback: str) -> str:
    message = str(exc).strip()
    return message or fallback


__all__ = [
    "ActionResult",
    "ApiError",
    "ErrorCode",
    "build_error",
    "error_result",
    "internal_error",
    "invalid_payload",
    "ok_result",
    "to_error_message",
]
