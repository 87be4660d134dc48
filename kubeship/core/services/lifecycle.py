"""
Lifecycle manager — serializes deploy, cleanup, and rollback per deploy id.

State machine per deploy id:

    deploy:   idle → locking → building → synthesizing → applying
                   → watching → {healthy, failed, timed_out} → idle
    cleanup:  idle → locking → deleting → idle
    rollback: idle → locking → rolling_back → {healthy, failed, timed_out}

The LockRegistry is passed in, never global. Acquisition fails fast
with DeployBusy. Spec validation runs before the lock and before any
backend call.

Failures never raise out of the manager: every run returns a
DeployOutcome carrying the terminal state, the stage it ended in, the
error (if any), and whether cleanup ran. A cleanup error is recorded
beside the original failure, never in place of it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Callable

from kubeship.core.errors import (
    ClusterApplyError,
    DeployBusy,
    DeployCancelled,
    KubeshipError,
    NoPriorRevision,
    RolloutFailed,
    RolloutTimeout,
)
from kubeship.core.models.deploy import BuildMode, BuildResult, DeploySpec
from kubeship.core.models.manifest import AppliedSet, ManifestSet, RolloutPhase, RolloutStatus
from kubeship.core.models.project import ProjectProfile
from kubeship.core.reliability.lock_registry import LifecycleLock, LockRegistry
from kubeship.core.services.image_build import ImageBuilder
from kubeship.core.services.k8s_cluster import DEFAULT_ROLLOUT_TIMEOUT, ClusterController
from kubeship.core.services.k8s_generate import synthesize, validate_deploy_spec
from kubeship.core.services.naming import make_deploy_id

logger = logging.getLogger(__name__)


class LifecycleState(StrEnum):
    IDLE = "idle"
    LOCKING = "locking"
    BUILDING = "building"
    SYNTHESIZING = "synthesizing"
    APPLYING = "applying"
    WATCHING = "watching"
    HEALTHY = "healthy"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    DELETING = "deleting"
    ROLLING_BACK = "rolling_back"


_STAGES: dict[LifecycleState, str] = {
    LifecycleState.LOCKING: "lock",
    LifecycleState.BUILDING: "build",
    LifecycleState.SYNTHESIZING: "synthesize",
    LifecycleState.APPLYING: "apply",
    LifecycleState.WATCHING: "watch",
    LifecycleState.DELETING: "delete",
    LifecycleState.ROLLING_BACK: "rollback",
}

# States after which cluster resources may exist
_CLUSTER_TOUCHED = frozenset({LifecycleState.APPLYING, LifecycleState.WATCHING})

TransitionHook = Callable[[str, LifecycleState], None]


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class DeployOutcome:
    """Result of one lifecycle run."""

    deploy_id: str
    operation: str
    state: LifecycleState = LifecycleState.IDLE
    stage: str = ""
    started_at: str = field(default_factory=_now_iso)
    ended_at: str = ""
    build: BuildResult | None = None
    manifests: ManifestSet | None = None
    applied: AppliedSet | None = None
    status: RolloutStatus | None = None
    error: KubeshipError | None = None
    rolled_back: bool = False
    cleanup_performed: bool = False
    cleanup_errors: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    pod_phases: list[str] = field(default_factory=list)
    transitions: list[LifecycleState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def exit_code(self) -> int:
        return self.error.exit_code if self.error else 0

    @property
    def reason(self) -> str:
        return self.error.reason if self.error else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "deploy_id": self.deploy_id,
            "operation": self.operation,
            "state": self.state.value,
            "stage": self.stage,
            "exit_code": self.exit_code,
            "reason": self.reason,
            "message": str(self.error) if self.error else "",
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "image": self.build.image.reference if self.build else (
                self.applied.image if self.applied else ""
            ),
            "reused_image": bool(self.build and self.build.reused),
            "resources": [r.model_dump() for r in self.applied.resources] if self.applied else [],
            "rollout": self.status.model_dump(mode="json") if self.status else None,
            "rolled_back": self.rolled_back,
            "cleanup_performed": self.cleanup_performed,
            "cleanup_errors": list(self.cleanup_errors),
            "deleted": list(self.deleted),
            "pod_phases": list(self.pod_phases),
            "transitions": [s.value for s in self.transitions],
        }


class LifecycleManager:
    """Runs deploy / cleanup / rollback under the per-deploy-id lock."""

    def __init__(
        self,
        builder: ImageBuilder,
        controller: ClusterController,
        locks: LockRegistry,
        *,
        rollout_timeout: float = DEFAULT_ROLLOUT_TIMEOUT,
        health_paths: dict[str, str] | None = None,
        on_transition: TransitionHook | None = None,
    ) -> None:
        self._builder = builder
        self._controller = controller
        self._locks = locks
        self._rollout_timeout = rollout_timeout
        self._health_paths = dict(health_paths or {})
        self._on_transition = on_transition

    # ── Plumbing ────────────────────────────────────────────────

    def _enter(self, outcome: DeployOutcome, state: LifecycleState) -> None:
        outcome.state = state
        outcome.transitions.append(state)
        if state in _STAGES:
            outcome.stage = _STAGES[state]
        logger.debug("[%s] %s → %s", outcome.deploy_id, outcome.operation, state.value)
        if self._on_transition is not None:
            self._on_transition(outcome.deploy_id, state)

    def _acquire(self, outcome: DeployOutcome) -> LifecycleLock | None:
        self._enter(outcome, LifecycleState.LOCKING)
        lock = self._locks.try_acquire(outcome.deploy_id, owner=outcome.operation)
        if lock is None:
            holder = self._locks.holder(outcome.deploy_id)
            outcome.error = DeployBusy(outcome.deploy_id, holder.owner if holder else "")
            self._enter(outcome, LifecycleState.IDLE)
            outcome.ended_at = _now_iso()
        return lock

    def _release(self, outcome: DeployOutcome, lock: LifecycleLock) -> None:
        self._locks.release(lock)
        outcome.ended_at = _now_iso()
        # Non-terminal states settle to idle; terminal ones stay reported
        if outcome.state in _STAGES:
            outcome.state = LifecycleState.IDLE
        outcome.transitions.append(LifecycleState.IDLE)
        if self._on_transition is not None:
            self._on_transition(outcome.deploy_id, LifecycleState.IDLE)

    def _cleanup(self, outcome: DeployOutcome, namespace: str, *, after_failure: bool = True) -> None:
        self._enter(outcome, LifecycleState.DELETING)
        outcome.cleanup_performed = after_failure
        try:
            outcome.deleted.extend(
                self._controller.delete(outcome.deploy_id, namespace, outcome.cleanup_errors)
            )
        except KubeshipError as e:
            logger.warning("Cleanup of %s failed: %s", outcome.deploy_id, e)
            outcome.cleanup_errors.append(str(e))

    @staticmethod
    def _check_cancel(cancel: threading.Event | None, stage: str) -> None:
        if cancel is not None and cancel.is_set():
            raise DeployCancelled(stage)

    # ── deploy ──────────────────────────────────────────────────

    def deploy(
        self,
        profile: ProjectProfile,
        spec: DeploySpec,
        mode: BuildMode,
        *,
        cleanup_previous: bool = False,
        rollback_on_failure: bool = False,
        cancel: threading.Event | None = None,
    ) -> DeployOutcome:
        """Build, synthesize, apply and watch one deployment.

        Args:
            cleanup_previous: Delete the existing resources of this deploy
                id before redeploying.
            rollback_on_failure: On a failed or timed-out rollout, revert
                to the prior image (falls back to cleanup when none).
            cancel: Set to abort at the next suspension point.
        """
        deploy_id = make_deploy_id(profile.root_path, profile.framework_kind.value, spec.namespace)
        outcome = DeployOutcome(deploy_id=deploy_id, operation="deploy")

        try:
            validate_deploy_spec(spec)
        except KubeshipError as e:
            outcome.error = e
            outcome.stage = e.stage
            outcome.state = LifecycleState.FAILED
            outcome.ended_at = _now_iso()
            return outcome

        lock = self._acquire(outcome)
        if lock is None:
            return outcome

        try:
            if cleanup_previous:
                self._cleanup(outcome, spec.namespace, after_failure=False)

            self._enter(outcome, LifecycleState.BUILDING)
            outcome.build = self._builder.build(profile, mode, cancel)

            self._enter(outcome, LifecycleState.SYNTHESIZING)
            outcome.manifests = synthesize(
                profile, outcome.build.image, spec, mode, self._health_paths,
            )
            self._check_cancel(cancel, "synthesize")

            self._enter(outcome, LifecycleState.APPLYING)
            outcome.applied = self._controller.apply(outcome.manifests)
            self._check_cancel(cancel, "apply")

            self._enter(outcome, LifecycleState.WATCHING)
            outcome.status = self._controller.watch_rollout(
                outcome.applied, timeout=self._rollout_timeout, cancel=cancel,
            )
            outcome.pod_phases = self._controller.pod_phases(deploy_id, spec.namespace)
            if outcome.status.healthy:
                self._enter(outcome, LifecycleState.HEALTHY)
                logger.info("Deploy %s healthy (%s)", deploy_id, outcome.applied.workload_name)
                return outcome

            self._handle_rollout_failure(outcome, spec, rollback_on_failure, cancel)
            return outcome

        except KubeshipError as e:
            failed_in = outcome.state
            outcome.error = e
            outcome.stage = e.stage or outcome.stage
            logger.error("Deploy %s failed at %s: %s", deploy_id, outcome.stage, e)
            if failed_in in _CLUSTER_TOUCHED and spec.cleanup_on_failure:
                self._cleanup(outcome, spec.namespace)
            self._enter(outcome, LifecycleState.FAILED)
            outcome.stage = e.stage or outcome.stage
            return outcome

        finally:
            self._release(outcome, lock)

    def _handle_rollout_failure(
        self,
        outcome: DeployOutcome,
        spec: DeploySpec,
        rollback_on_failure: bool,
        cancel: threading.Event | None,
    ) -> None:
        status = outcome.status
        assert status is not None
        if cancel is not None and cancel.is_set():
            error: KubeshipError = DeployCancelled("watch")
            terminal = LifecycleState.FAILED
        elif status.phase is RolloutPhase.TIMED_OUT:
            error = RolloutTimeout(status.message)
            terminal = LifecycleState.TIMED_OUT
        else:
            error = RolloutFailed(status.message)
            terminal = LifecycleState.FAILED

        outcome.error = error
        logger.error("Deploy %s: %s", outcome.deploy_id, error)

        cancelled = isinstance(error, DeployCancelled)
        if rollback_on_failure and not cancelled:
            self._enter(outcome, LifecycleState.ROLLING_BACK)
            try:
                rb = self._controller.rollback(
                    outcome.deploy_id, spec.namespace, timeout=self._rollout_timeout, cancel=cancel,
                )
                outcome.rolled_back = True
                logger.info("Rollback of %s ended %s", outcome.deploy_id, rb.phase.value)
            except NoPriorRevision as e:
                logger.warning("Rollback skipped: %s", e)
            except KubeshipError as e:
                logger.warning("Rollback of %s failed: %s", outcome.deploy_id, e)
                outcome.cleanup_errors.append(str(e))

        if not outcome.rolled_back and spec.cleanup_on_failure:
            self._cleanup(outcome, spec.namespace)

        self._enter(outcome, terminal)
        outcome.stage = error.stage

    # ── cleanup ─────────────────────────────────────────────────

    def cleanup(self, profile: ProjectProfile, namespace: str) -> DeployOutcome:
        """Delete every resource of this project's deploy id."""
        deploy_id = make_deploy_id(profile.root_path, profile.framework_kind.value, namespace)
        outcome = DeployOutcome(deploy_id=deploy_id, operation="cleanup")

        lock = self._acquire(outcome)
        if lock is None:
            return outcome
        try:
            self._controller.ensure_available("delete")
            self._cleanup(outcome, namespace)
            if outcome.cleanup_errors:
                outcome.error = ClusterApplyError(
                    "cleanup incomplete: " + "; ".join(outcome.cleanup_errors), stage="delete",
                )
                self._enter(outcome, LifecycleState.FAILED)
                outcome.stage = "delete"
        except KubeshipError as e:
            outcome.error = e
            outcome.stage = e.stage
            self._enter(outcome, LifecycleState.FAILED)
        finally:
            self._release(outcome, lock)
        return outcome

    # ── rollback ────────────────────────────────────────────────

    def rollback(
        self,
        profile: ProjectProfile,
        namespace: str,
        cancel: threading.Event | None = None,
    ) -> DeployOutcome:
        """Revert this project's workload to its prior image and watch it."""
        deploy_id = make_deploy_id(profile.root_path, profile.framework_kind.value, namespace)
        outcome = DeployOutcome(deploy_id=deploy_id, operation="rollback")

        lock = self._acquire(outcome)
        if lock is None:
            return outcome
        try:
            self._enter(outcome, LifecycleState.ROLLING_BACK)
            outcome.status = self._controller.rollback(
                deploy_id, namespace, timeout=self._rollout_timeout, cancel=cancel,
            )
            outcome.rolled_back = True
            outcome.pod_phases = self._controller.pod_phases(deploy_id, namespace)
            if outcome.status.healthy:
                self._enter(outcome, LifecycleState.HEALTHY)
            elif cancel is not None and cancel.is_set():
                outcome.error = DeployCancelled("rollback")
                self._enter(outcome, LifecycleState.FAILED)
            elif outcome.status.phase is RolloutPhase.TIMED_OUT:
                outcome.error = RolloutTimeout(outcome.status.message, stage="rollback")
                self._enter(outcome, LifecycleState.TIMED_OUT)
            else:
                outcome.error = RolloutFailed(outcome.status.message, stage="rollback")
                self._enter(outcome, LifecycleState.FAILED)
            outcome.stage = "rollback"
        except KubeshipError as e:
            outcome.error = e
            self._enter(outcome, LifecycleState.FAILED)
            outcome.stage = e.stage or "rollback"
        finally:
            self._release(outcome, lock)
        return outcome
