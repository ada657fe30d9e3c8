"""Agent launch profile models and loader exports."""

from .loader import AgentLaunchProfile, ProfileLoadError, ProfileLoader, load_profiles
from .models import BUILTIN_PROFILES

__all__ = [
    "AgentLaunchProfile",
    "BUILTIN_PROFILES",
    "ProfileLoadError",
    "ProfileLoader",
    "load_profiles",
]
