"""
Configuration loader — reads kubeship.yml into a ProjectConfig.

The file is optional: a project without one deploys with defaults.
CLI flags are layered on top by the deploy use case.

    name: storefront
    namespace: web
    port: 4000
    replicas: {min: 2, max: 6}
    autoscale: {cpu: 60, memory: 75}
    registry: ghcr.io/acme
    package_manager: yarn
    rollout: {interval: 2, timeout: 180}
    health_paths: {react: /healthz}
    source_mount: false
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from kubeship.core.errors import ConfigError
from kubeship.core.models.deploy import MAX_REPLICAS

logger = logging.getLogger(__name__)

PROJECT_CONFIG_FILE = "kubeship.yml"
_ALT_CONFIG_FILES = ("kubeship.yaml",)

# Markers that identify a project root when walking up from cwd.
_ROOT_MARKERS = (PROJECT_CONFIG_FILE, *_ALT_CONFIG_FILES, "package.json")


class ReplicaConfig(BaseModel):
    min: int = 1
    max: int = MAX_REPLICAS


class AutoscaleConfig(BaseModel):
    cpu: int = 70
    memory: int = 80


class RolloutConfig(BaseModel):
    interval: float = 2.0
    timeout: float = 120.0


class ProjectConfig(BaseModel):
    """Validated contents of kubeship.yml (all keys optional)."""

    name: str | None = None
    type: str | None = None
    namespace: str = "default"
    port: int | None = None
    replicas: ReplicaConfig = Field(default_factory=ReplicaConfig)
    autoscale: AutoscaleConfig = Field(default_factory=AutoscaleConfig)
    rollout: RolloutConfig = Field(default_factory=RolloutConfig)
    registry: str | None = None
    package_manager: str | None = None
    health_paths: dict[str, str] = Field(default_factory=dict)
    source_mount: bool = True
    env: dict[str, str] = Field(default_factory=dict)


def find_project_root(start_dir: Path | None = None) -> Path:
    """Walk up from ``start_dir`` to the nearest directory with a marker.

    Falls back to ``start_dir`` itself (or cwd) when nothing is found.
    """
    start = (start_dir or Path.cwd()).resolve()
    current = start

    for _ in range(20):  # safety limit
        if any((current / marker).is_file() for marker in _ROOT_MARKERS):
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent

    return start


def find_config_file(project_root: Path) -> Path | None:
    """Return the config file in ``project_root``, if any."""
    for name in (PROJECT_CONFIG_FILE, *_ALT_CONFIG_FILES):
        candidate = project_root / name
        if candidate.is_file():
            return candidate
    return None


def load_config(project_root: Path, path: Path | None = None) -> ProjectConfig:
    """Load and validate project configuration.

    Args:
        project_root: Directory searched when ``path`` is not given.
        path: Explicit config file path.

    Returns:
        ProjectConfig; defaults when no file exists.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None:
        path = find_config_file(project_root)
        if path is None:
            logger.debug("No %s in %s — using defaults", PROJECT_CONFIG_FILE, project_root)
            return ProjectConfig()
    elif not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return ProjectConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = ProjectConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded config from %s (namespace=%s)", path, config.namespace)
    return config
