"""
Deploy use cases — deploy, cleanup, and rollback from the CLI's point of view.

This is the top-level wiring: it loads kubeship.yml, inspects the
project, layers CLI flags over the config into a DeploySpec, builds the
backends (real or mock), runs the LifecycleManager, and records the
outcome in .kubeship/state.json.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from kubeship.adapters.base import BuildBackend, ClusterApi
from kubeship.adapters.cluster.kubectl import KubectlClusterApi
from kubeship.adapters.containers.docker import DockerBuildBackend
from kubeship.adapters.mock import MockBuildBackend, MockClusterApi
from kubeship.core.config.loader import ProjectConfig, load_config
from kubeship.core.errors import ConfigError, KubeshipError, UnsupportedFramework
from kubeship.core.models.deploy import BuildMode, DeploySpec
from kubeship.core.models.project import FrameworkKind, PackageManager, ProjectProfile
from kubeship.core.models.state import OperationRecord
from kubeship.core.persistence.state_file import default_state_path, load_state, save_state
from kubeship.core.reliability.lock_registry import LockRegistry
from kubeship.core.services.image_build import ImageBuilder
from kubeship.core.services.k8s_cluster import ClusterController
from kubeship.core.services.lifecycle import DeployOutcome, LifecycleManager
from kubeship.core.services.naming import make_deploy_id, resource_name
from kubeship.core.services.project_inspect import inspect

logger = logging.getLogger(__name__)

# One registry per process: concurrent invocations inside this process
# (tests, embedding callers) contend on it. Separate kubeship processes
# do not see each other's locks.
_PROCESS_LOCKS = LockRegistry()


@dataclass
class DeployOptions:
    """CLI flags for deploy / cleanup / rollback. None means "use config"."""

    prod: bool = False
    port: int | None = None
    rpl: bool = False
    cleanup: bool = False
    rollback: bool = False
    framework: str | None = None
    namespace: str | None = None
    timeout: float | None = None
    package_manager: str | None = None
    source_mount: bool | None = None
    mock: bool = False

    @property
    def mode(self) -> BuildMode:
        return BuildMode.PROD if self.prod else BuildMode.DEV


@dataclass
class Backends:
    """Build and cluster backends for one run."""

    build: BuildBackend
    cluster: ClusterApi


@dataclass
class DeployRunResult:
    """What one CLI-level operation produced."""

    operation: str
    project_root: Path
    profile: ProjectProfile | None = None
    spec: DeploySpec | None = None
    outcome: DeployOutcome | None = None
    error: KubeshipError | None = None
    state_saved: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def failure(self) -> KubeshipError | None:
        if self.error is not None:
            return self.error
        return self.outcome.error if self.outcome else None

    @property
    def exit_code(self) -> int:
        failure = self.failure
        return failure.exit_code if failure else 0

    def to_dict(self) -> dict:
        result: dict[str, Any] = {
            "operation": self.operation,
            "project_root": str(self.project_root),
            "exit_code": self.exit_code,
        }
        if self.error is not None:
            result["error"] = self.error.to_dict()
            return result
        if self.profile is not None:
            result["framework"] = self.profile.framework_kind.value
        if self.spec is not None:
            result["spec"] = self.spec.model_dump()
        if self.outcome is not None:
            result.update(self.outcome.to_dict())
            if self.outcome.error is not None:
                result["error"] = self.outcome.error.to_dict()
        return result


# ═══════════════════════════════════════════════════════════════════
#  Wiring helpers
# ═══════════════════════════════════════════════════════════════════


def framework_override(options: DeployOptions, config: ProjectConfig) -> FrameworkKind | None:
    raw = options.framework or config.type
    if not raw:
        return None
    try:
        return FrameworkKind.parse(raw)
    except ValueError as e:
        raise UnsupportedFramework(
            f"Unknown framework '{raw}'. Choose one of: {', '.join(FrameworkKind.choices())}"
        ) from e


def inspect_project(project_root: Path, options: DeployOptions, config: ProjectConfig) -> ProjectProfile:
    """Inspect with the configured framework override and app name."""
    return inspect(project_root, framework_override(options, config), name=config.name)


def requested_package_manager(options: DeployOptions, config: ProjectConfig) -> PackageManager | None:
    raw = options.package_manager or config.package_manager
    if not raw:
        return None
    try:
        return PackageManager(raw.lower())
    except ValueError as e:
        raise ConfigError(f"Unknown package manager '{raw}'") from e


def build_spec(
    profile: ProjectProfile,
    config: ProjectConfig,
    options: DeployOptions,
) -> DeploySpec:
    """CLI flags > kubeship.yml > profile > defaults."""
    port = options.port or config.port or profile.declared_port or 3000
    return DeploySpec(
        namespace=options.namespace or config.namespace,
        port=port,
        replica_min=config.replicas.min,
        replica_max=config.replicas.max,
        cpu_threshold_pct=config.autoscale.cpu,
        mem_threshold_pct=config.autoscale.memory,
        cleanup_on_failure=options.cleanup,
        autoscale=options.rpl,
        source_mount=config.source_mount if options.source_mount is None else options.source_mount,
        extra_env=dict(config.env),
    )


def make_backends(mock: bool) -> Backends:
    if mock:
        return Backends(build=MockBuildBackend(), cluster=MockClusterApi())
    return Backends(build=DockerBuildBackend(), cluster=KubectlClusterApi())


def make_manager(
    config: ProjectConfig,
    options: DeployOptions,
    backends: Backends,
    locks: LockRegistry | None = None,
) -> LifecycleManager:
    builder = ImageBuilder(
        backends.build,
        registry=config.registry,
        package_manager=requested_package_manager(options, config),
    )
    controller = ClusterController(backends.cluster, interval=config.rollout.interval)
    return LifecycleManager(
        builder,
        controller,
        locks if locks is not None else _PROCESS_LOCKS,
        rollout_timeout=options.timeout or config.rollout.timeout,
        health_paths=config.health_paths,
    )


def _prepare(
    operation: str,
    project_root: Path,
    options: DeployOptions,
) -> tuple[DeployRunResult, ProjectConfig | None]:
    result = DeployRunResult(operation=operation, project_root=project_root)
    try:
        config = load_config(project_root)
        result.profile = inspect_project(project_root, options, config)
    except KubeshipError as e:
        logger.error("%s aborted: %s", operation, e)
        result.error = e
        return result, None
    return result, config


def _record(result: DeployRunResult, mode: str = "") -> None:
    """Append the outcome to .kubeship/state.json. Never fails the run."""
    outcome = result.outcome
    profile = result.profile
    if outcome is None or profile is None:
        return

    path = default_state_path(result.project_root)
    state = load_state(path)
    namespace = result.spec.namespace if result.spec else result.extra.get("namespace", "")
    fields: dict[str, Any] = {
        "app_name": profile.app_name,
        "framework_kind": profile.framework_kind.value,
        "resource_name": resource_name(profile.app_name, outcome.deploy_id),
    }
    if namespace:
        fields["namespace"] = namespace
    if mode:
        fields["mode"] = mode
    record = state.get_or_create(outcome.deploy_id, **fields)

    image = ""
    if outcome.build is not None:
        image = outcome.build.image.reference
    elif outcome.applied is not None:
        image = outcome.applied.image
    if image and outcome.ok and image != record.image:
        record.previous_image, record.image = record.image, image
    if outcome.pod_phases or outcome.operation == "cleanup":
        record.pod_phases = list(outcome.pod_phases)

    error = outcome.error
    record.record(OperationRecord(
        operation=outcome.operation,
        started_at=outcome.started_at,
        ended_at=outcome.ended_at,
        state=outcome.state.value,
        stage=outcome.stage,
        reason=error.reason if error else "",
        message=str(error) if error else "",
        image=image,
        reused_image=bool(outcome.build and outcome.build.reused),
        exit_code=outcome.exit_code,
    ))

    try:
        save_state(state, path)
        result.state_saved = True
    except OSError as e:
        logger.warning("Could not record state in %s: %s", path, e)


# ═══════════════════════════════════════════════════════════════════
#  Use cases
# ═══════════════════════════════════════════════════════════════════


def run_deploy(
    project_root: Path,
    options: DeployOptions,
    *,
    cancel: threading.Event | None = None,
    backends: Backends | None = None,
    locks: LockRegistry | None = None,
) -> DeployRunResult:
    """Inspect, build, apply, and watch one deployment."""
    result, config = _prepare("deploy", project_root, options)
    if config is None or result.profile is None:
        return result

    try:
        result.spec = build_spec(result.profile, config, options)
        manager = make_manager(config, options, backends or make_backends(options.mock), locks)
    except KubeshipError as e:
        result.error = e
        return result

    result.outcome = manager.deploy(
        result.profile,
        result.spec,
        options.mode,
        cleanup_previous=options.cleanup,
        rollback_on_failure=options.rollback,
        cancel=cancel,
    )
    _record(result, options.mode.value)
    return result


def run_cleanup(
    project_root: Path,
    options: DeployOptions,
    *,
    backends: Backends | None = None,
    locks: LockRegistry | None = None,
) -> DeployRunResult:
    """Delete everything the project's deploy id created."""
    result, config = _prepare("cleanup", project_root, options)
    if config is None or result.profile is None:
        return result

    namespace = options.namespace or config.namespace
    try:
        manager = make_manager(config, options, backends or make_backends(options.mock), locks)
    except KubeshipError as e:
        result.error = e
        return result
    result.outcome = manager.cleanup(result.profile, namespace)
    result.extra["namespace"] = namespace
    _record(result)
    return result


def run_rollback(
    project_root: Path,
    options: DeployOptions,
    *,
    cancel: threading.Event | None = None,
    backends: Backends | None = None,
    locks: LockRegistry | None = None,
) -> DeployRunResult:
    """Revert the project's workload to its prior image."""
    result, config = _prepare("rollback", project_root, options)
    if config is None or result.profile is None:
        return result

    namespace = options.namespace or config.namespace
    try:
        manager = make_manager(config, options, backends or make_backends(options.mock), locks)
    except KubeshipError as e:
        result.error = e
        return result
    result.outcome = manager.rollback(result.profile, namespace, cancel=cancel)
    result.extra["namespace"] = namespace
    _record(result)
    return result


def deploy_id_for(project_root: Path, options: DeployOptions) -> tuple[ProjectProfile, str, str]:
    """(profile, namespace, deploy id) without touching any backend.

    Raises:
        KubeshipError: Config or inspection failure.
    """
    config = load_config(project_root)
    profile = inspect_project(project_root, options, config)
    namespace = options.namespace or config.namespace
    return profile, namespace, make_deploy_id(
        profile.root_path, profile.framework_kind.value, namespace,
    )
