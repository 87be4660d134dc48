"""
Project model — what the inspector learned about a project directory.

A ProjectProfile is created once per invocation and never mutated.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class FrameworkKind(StrEnum):
    """Detected category of web project."""

    BUN_DEFAULT = "bun-default"
    REACT = "react"
    VUE = "vue"
    MERN = "mern"
    SVELTE = "svelte"
    ANGULAR = "angular"
    ASTRO = "astro"
    REMIX = "remix"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str) -> FrameworkKind:
        """Accept CLI spellings such as ``bun`` or ``React``."""
        normalized = value.strip().lower()
        if normalized == "bun":
            return cls.BUN_DEFAULT
        return cls(normalized)

    @classmethod
    def choices(cls) -> list[str]:
        """Kinds a user may pass as an explicit override."""
        return [k.value for k in cls if k is not cls.UNKNOWN]


class PackageManager(StrEnum):
    """JavaScript package manager driving install/build commands."""

    NPM = "npm"
    YARN = "yarn"
    BUN = "bun"
    UNKNOWN = "unknown"


class ProjectProfile(BaseModel):
    """Classification and build metadata of one project directory."""

    model_config = ConfigDict(frozen=True)

    root_path: Path
    framework_kind: FrameworkKind
    entry_point: str = ""
    declared_port: int | None = None
    package_manager: PackageManager = PackageManager.UNKNOWN
    has_lockfile: bool = False
    name: str | None = None

    @property
    def app_name(self) -> str:
        """DNS-1123 safe application name: configured name, else the directory."""
        from kubeship.core.services.naming import dns_label

        return dns_label(self.name or self.root_path.name)
