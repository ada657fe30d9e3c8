"""Process tree capability."""

from .tree import SIGKILL, SIGTERM, FakeProcessTree, ProcessInfo, ProcessTree, PsutilProcessTree

__all__ = [
    "FakeProcessTree",
    "ProcessInfo",
    "ProcessTree",
    "PsutilProcessTree",
    "SIGKILL",
    "SIGTERM",
]
