"""Launch profile loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import BUILTIN_PROFILES, AgentLaunchProfile


class ProfileLoadError(RuntimeError):
    """Raised when one or more profile files cannot be parsed."""


class ProfileLoader:
    """Loads agent launch profiles from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, AgentLaunchProfile]:
        """Return built-in profiles overridden by any found on disk.

        Later search paths override earlier ones when agents collide. A
        YAML document may hold a single profile or a list of them.
        """

        profiles: dict[str, AgentLaunchProfile] = dict(BUILTIN_PROFILES)
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                for item in document if isinstance(document, list) else [document]:
                    try:
                        profile = AgentLaunchProfile.model_validate(item)
                    except ValidationError as exc:
                        errors.append(f"Profile validation error in {path}: {exc}")
                        continue
                    profiles[profile.agent] = profile

        if errors:
            raise ProfileLoadError("; ".join(errors))

        return profiles

    def get(self, agent: str) -> AgentLaunchProfile:
        profiles = self.load_all()
        try:
            return profiles[agent]
        except KeyError as exc:
            raise ProfileLoadError(f"No launch profile for agent '{agent}'") from exc


def load_profiles(search_paths: Iterable[Path] | None = None) -> dict[str, AgentLaunchProfile]:
    """Convenience wrapper for loading profiles from the provided paths."""

    return ProfileLoader(search_paths).load_all()


__all__ = ["AgentLaunchProfile", "ProfileLoadError", "ProfileLoader", "load_profiles"]
