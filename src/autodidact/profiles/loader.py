"""Read pricing profiles from YAML pricing tables."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Iterator

import yaml
from pydantic import ValidationError

from .models import DEFAULT_PROFILE, AgentProfile

logger = logging.getLogger(__name__)

PROFILE_SUFFIXES = (".yml", ".yaml")


class ProfileLoadError(RuntimeError):
    """Raised when a pricing table cannot be read or a profile id is unknown."""


class ProfileLoader:
    """Collect agent profiles from pricing tables layered over the built-in one.

    A table is either a single profile mapping or a mapping with a
    ``profiles`` list. Directories are read in order; a later definition of
    the same id replaces the earlier one, including the built-in ``sonnet``.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        self._search_paths = [Path(path) for path in (search_paths or []) if Path(path).exists()]
        self._sources: dict[str, Path | None] = {}

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    @property
    def sources(self) -> dict[str, Path | None]:
        """Where each profile of the last load came from; ``None`` is built in."""

        return dict(self._sources)

    def load_all(self) -> dict[str, AgentProfile]:
        profiles: dict[str, AgentProfile] = {DEFAULT_PROFILE.id: DEFAULT_PROFILE}
        sources: dict[str, Path | None] = {DEFAULT_PROFILE.id: None}
        problems: list[str] = []

        for path in self._table_files():
            try:
                entries = list(_entries(yaml.safe_load(path.read_text(encoding="utf-8"))))
            except (yaml.YAMLError, ValueError) as exc:
                problems.append(f"{path}: {exc}")
                continue

            for entry in entries:
                try:
                    profile = AgentProfile.model_validate(entry)
                except ValidationError as exc:
                    problems.append(f"{path}: invalid profile: {exc}")
                    continue
                if profile.id in sources:
                    logger.debug(
                        "Profile overridden",
                        extra={"profile": profile.id, "source": str(path)},
                    )
                profiles[profile.id] = profile
                sources[profile.id] = path

        if problems:
            raise ProfileLoadError("; ".join(problems))

        self._sources = sources
        return profiles

    def get(self, profile_id: str) -> AgentProfile:
        wanted = profile_id.strip().lower()
        profiles = self.load_all()
        if wanted not in profiles:
            raise ProfileLoadError(
                f"Profile '{profile_id}' not found; known profiles: {', '.join(sorted(profiles))}"
            )
        return profiles[wanted]

    def _table_files(self) -> Iterator[Path]:
        for base in self._search_paths:
            if base.is_file():
                yield base
                continue
            yield from sorted(
                path for path in base.iterdir() if path.suffix in PROFILE_SUFFIXES and path.is_file()
            )


def _entries(document: Any) -> Iterator[Any]:
    if document is None:
        return
    if isinstance(document, dict) and "profiles" in document:
        listed = document["profiles"] or []
        if not isinstance(listed, list):
            raise ValueError("'profiles' must be a list")
        yield from listed
        return
    yield document


def load_profiles(search_paths: Iterable[Path] | None = None) -> dict[str, AgentProfile]:
    return ProfileLoader(search_paths).load_all()


__all__ = ["PROFILE_SUFFIXES", "ProfileLoadError", "ProfileLoader", "load_profiles"]
