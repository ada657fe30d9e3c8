"""Agent launch orchestration."""

from .idempotency import IdempotencyCache, IdempotencyMismatchError, fingerprint
from .interrupt import PaneInterrupter, PaneTarget
from .models import (
    LaunchAgentResult,
    LaunchCommandResponse,
    LaunchRequest,
    LaunchResumeMeta,
    LaunchRollback,
    LaunchVerification,
    PaneDetail,
)
from .orchestrator import LaunchOrchestrator, build_launch_command
from .resume import PaneDirectory, PaneSessionResolver, ResumePlan, ResumePlanner, TmuxPaneDirectory
from .service import LaunchService

__all__ = [
    "IdempotencyCache",
    "IdempotencyMismatchError",
    "LaunchAgentResult",
    "LaunchCommandResponse",
    "LaunchOrchestrator",
    "LaunchRequest",
    "LaunchResumeMeta",
    "LaunchRollback",
    "LaunchService",
    "LaunchVerification",
    "PaneDetail",
    "PaneDirectory",
    "PaneInterrupter",
    "PaneSessionResolver",
    "PaneTarget",
    "ResumePlan",
    "ResumePlanner",
    "TmuxPaneDirectory",
    "build_launch_command",
    "fingerprint",
]
