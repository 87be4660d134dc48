"""
Tests for the lifecycle manager — stage ordering, failure handling,
cleanup, rollback, and per-deploy-id mutual exclusion.

Runs entirely on the mock backends with a fake clock.
"""

import threading
from pathlib import Path

from kubeship.adapters.mock import MockBuildBackend, MockClusterApi
from kubeship.core.errors import (
    ClusterApplyError,
    DeployBusy,
    DeployCancelled,
    ImageBuildError,
    InvalidScalingBounds,
    NoPriorRevision,
    RolloutFailed,
    RolloutTimeout,
)
from kubeship.core.models.deploy import BuildMode, DeploySpec
from kubeship.core.reliability.lock_registry import LockRegistry
from kubeship.core.services.image_build import ImageBuilder
from kubeship.core.services.k8s_cluster import ClusterController
from kubeship.core.services.lifecycle import LifecycleManager, LifecycleState as S
from kubeship.core.services.project_inspect import inspect


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def wait(self, seconds: float) -> None:
        self.now += seconds


class Rig:
    """Manager wired to mock backends."""

    def __init__(
        self,
        build: MockBuildBackend | None = None,
        api: MockClusterApi | None = None,
        locks: LockRegistry | None = None,
        on_transition=None,
    ) -> None:
        self.build = build or MockBuildBackend()
        self.api = api or MockClusterApi()
        self.locks = locks or LockRegistry()
        clock = FakeClock()
        self.manager = LifecycleManager(
            ImageBuilder(self.build),
            ClusterController(self.api, interval=2.0, clock=clock, wait=clock.wait),
            self.locks,
            rollout_timeout=10,
            on_transition=on_transition,
        )


# ═══════════════════════════════════════════════════════════════════
#  Happy path
# ═══════════════════════════════════════════════════════════════════


class TestDeployHealthy:
    def test_healthy_exit_zero(self, react_project: Path):
        rig = Rig()
        outcome = rig.manager.deploy(inspect(react_project), DeploySpec(), BuildMode.DEV)

        assert outcome.ok
        assert outcome.exit_code == 0
        assert outcome.state is S.HEALTHY
        assert outcome.transitions == [
            S.LOCKING, S.BUILDING, S.SYNTHESIZING, S.APPLYING, S.WATCHING, S.HEALTHY, S.IDLE,
        ]
        assert outcome.ended_at
        assert not rig.locks.is_held(outcome.deploy_id)

    def test_redeploy_reuses_image(self, react_project: Path):
        rig = Rig()
        profile = inspect(react_project)
        rig.manager.deploy(profile, DeploySpec(), BuildMode.DEV)
        second = rig.manager.deploy(profile, DeploySpec(), BuildMode.DEV)

        assert second.ok
        assert second.build.reused is True
        assert rig.build.builds == 1
        assert all(r.action == "configured" for r in second.applied.resources)

    def test_three_replicas_climb_to_healthy(self, react_project: Path):
        rig = Rig()
        spec = DeploySpec(replica_min=3, replica_max=5)
        outcome = rig.manager.deploy(inspect(react_project), spec, BuildMode.PROD)

        assert outcome.ok
        assert outcome.status.polls == 3
        assert outcome.status.ready_replicas == 3
        assert outcome.pod_phases == ["Running", "Running", "Running"]

    def test_new_image_rolls_through_surge(self, react_project: Path):
        rig = Rig()
        profile = inspect(react_project)
        spec = DeploySpec(replica_min=3, replica_max=5)
        rig.manager.deploy(profile, spec, BuildMode.PROD)

        (react_project / "src" / "index.jsx").write_text("// v2\n")
        outcome = rig.manager.deploy(profile, spec, BuildMode.PROD)

        assert outcome.ok
        # 1/3, 2/3, 3/3 with one old pod left, then the old pod gone
        assert outcome.status.polls == 4
        assert outcome.pod_phases == ["Running"] * 3

    def test_outcome_to_dict(self, react_project: Path):
        outcome = Rig().manager.deploy(inspect(react_project), DeploySpec(autoscale=True), BuildMode.PROD)
        data = outcome.to_dict()
        assert data["state"] == "healthy"
        assert data["exit_code"] == 0
        assert [r["kind"] for r in data["resources"]] == ["Deployment", "Service", "HorizontalPodAutoscaler"]
        assert data["image"].startswith("dashboard:prod-")

    def test_cleanup_previous_deletes_first(self, react_project: Path):
        rig = Rig()
        profile = inspect(react_project)
        rig.manager.deploy(profile, DeploySpec(), BuildMode.DEV)
        rig.api.call_log.clear()

        outcome = rig.manager.deploy(profile, DeploySpec(), BuildMode.DEV, cleanup_previous=True)

        ops = [op for op, _, _ in rig.api.call_log]
        assert ops.index("delete") < ops.index("apply")
        assert outcome.ok
        assert outcome.cleanup_performed is False
        assert all(r.action == "created" for r in outcome.applied.resources)


# ═══════════════════════════════════════════════════════════════════
#  Failures
# ═══════════════════════════════════════════════════════════════════


class TestDeployFailures:
    def test_invalid_bounds_before_any_io(self, react_project: Path):
        rig = Rig()
        outcome = rig.manager.deploy(
            inspect(react_project), DeploySpec(replica_min=5, replica_max=2), BuildMode.DEV,
        )

        assert isinstance(outcome.error, InvalidScalingBounds)
        assert outcome.exit_code == 1
        assert outcome.stage == "validate"
        assert outcome.transitions == []
        assert rig.build.call_log == []
        assert rig.api.call_log == []

    def test_build_failure_exit_two(self, react_project: Path):
        rig = Rig(build=MockBuildBackend(fail_build="compile error"))
        outcome = rig.manager.deploy(
            inspect(react_project), DeploySpec(cleanup_on_failure=True), BuildMode.DEV,
        )

        assert isinstance(outcome.error, ImageBuildError)
        assert outcome.exit_code == 2
        assert outcome.stage == "build"
        assert outcome.state is S.FAILED
        assert rig.api.operations("apply") == []
        assert outcome.cleanup_performed is False

    def test_timeout_with_cleanup(self, react_project: Path):
        rig = Rig(api=MockClusterApi(rollout="stuck"))
        outcome = rig.manager.deploy(
            inspect(react_project), DeploySpec(cleanup_on_failure=True), BuildMode.DEV,
        )

        assert isinstance(outcome.error, RolloutTimeout)
        assert outcome.exit_code == 3
        assert outcome.state is S.TIMED_OUT
        assert outcome.stage == "watch"
        assert outcome.cleanup_performed is True
        assert rig.api.operations("delete")
        assert rig.api.objects == {}

    def test_three_replicas_stuck_times_out_and_cleans_up(self, react_project: Path):
        rig = Rig(api=MockClusterApi(rollout="stuck"))
        spec = DeploySpec(replica_min=3, replica_max=5, cleanup_on_failure=True)
        outcome = rig.manager.deploy(inspect(react_project), spec, BuildMode.PROD)

        assert isinstance(outcome.error, RolloutTimeout)
        assert outcome.exit_code == 3
        assert outcome.state is S.TIMED_OUT
        assert outcome.status.desired_replicas == 3
        assert outcome.status.ready_replicas == 0
        assert outcome.cleanup_performed is True
        assert rig.api.objects == {}

    def test_timeout_without_cleanup_leaves_resources(self, react_project: Path):
        rig = Rig(api=MockClusterApi(rollout="stuck"))
        outcome = rig.manager.deploy(inspect(react_project), DeploySpec(), BuildMode.DEV)

        assert outcome.exit_code == 3
        assert outcome.cleanup_performed is False
        assert rig.api.operations("delete") == []
        assert len(rig.api.objects) == 2

    def test_rollout_failed(self, react_project: Path):
        rig = Rig(api=MockClusterApi(rollout="failed"))
        outcome = rig.manager.deploy(inspect(react_project), DeploySpec(), BuildMode.DEV)
        assert isinstance(outcome.error, RolloutFailed)
        assert outcome.state is S.FAILED
        assert outcome.exit_code == 3

    def test_apply_failure_cleans_up(self, react_project: Path):
        rig = Rig(api=MockClusterApi(fail_apply={"Service"}))
        outcome = rig.manager.deploy(
            inspect(react_project), DeploySpec(cleanup_on_failure=True), BuildMode.DEV,
        )

        assert isinstance(outcome.error, ClusterApplyError)
        assert outcome.stage == "apply"
        assert outcome.exit_code == 3
        assert outcome.cleanup_performed is True
        assert outcome.deleted == [f"Deployment/{outcome.manifests.name}"]

    def test_cleanup_errors_do_not_replace_reason(self, react_project: Path):
        rig = Rig(api=MockClusterApi(rollout="stuck", fail_delete={"Deployment"}))
        outcome = rig.manager.deploy(
            inspect(react_project), DeploySpec(cleanup_on_failure=True), BuildMode.DEV,
        )
        assert isinstance(outcome.error, RolloutTimeout)
        assert outcome.cleanup_errors
        assert outcome.reason == "RolloutTimeout"


# ═══════════════════════════════════════════════════════════════════
#  Cancellation
# ═══════════════════════════════════════════════════════════════════


class TestCancellation:
    def test_cancel_before_build(self, react_project: Path):
        rig = Rig()
        cancel = threading.Event()
        cancel.set()
        outcome = rig.manager.deploy(inspect(react_project), DeploySpec(), BuildMode.DEV, cancel=cancel)

        assert isinstance(outcome.error, DeployCancelled)
        assert outcome.exit_code == 2
        assert rig.api.call_log == []
        assert not rig.locks.is_held(outcome.deploy_id)

    def test_cancel_during_watch(self, react_project: Path):
        cancel = threading.Event()

        def _hook(_deploy_id, state):
            if state is S.WATCHING:
                cancel.set()

        rig = Rig(api=MockClusterApi(rollout="stuck"), on_transition=_hook)
        outcome = rig.manager.deploy(
            inspect(react_project), DeploySpec(cleanup_on_failure=True), BuildMode.DEV, cancel=cancel,
        )

        assert isinstance(outcome.error, DeployCancelled)
        assert outcome.stage == "watch"
        assert outcome.exit_code == 3
        assert outcome.state is S.FAILED
        assert outcome.cleanup_performed is True


# ═══════════════════════════════════════════════════════════════════
#  Rollback
# ═══════════════════════════════════════════════════════════════════


class TestRollbackOnFailure:
    def test_reverts_to_prior_image(self, react_project: Path):
        api = MockClusterApi()

        def _heal_on_rollback(_deploy_id, state):
            if state is S.ROLLING_BACK:
                api.rollout = "healthy"

        rig = Rig(api=api, on_transition=_heal_on_rollback)
        profile = inspect(react_project)
        first = rig.manager.deploy(profile, DeploySpec(), BuildMode.DEV)

        (react_project / "src" / "index.jsx").write_text("// broken release\n")
        api.rollout = "stuck"
        second = rig.manager.deploy(
            profile, DeploySpec(cleanup_on_failure=True), BuildMode.DEV, rollback_on_failure=True,
        )

        assert second.build.image.reference != first.build.image.reference
        assert isinstance(second.error, RolloutTimeout)
        assert second.rolled_back is True
        assert second.cleanup_performed is False
        stored = api.objects[("Deployment", "default", second.manifests.name)]
        assert stored["spec"]["template"]["spec"]["containers"][0]["image"] == first.build.image.reference

    def test_no_prior_falls_back_to_cleanup(self, react_project: Path):
        rig = Rig(api=MockClusterApi(rollout="stuck"))
        outcome = rig.manager.deploy(
            inspect(react_project), DeploySpec(cleanup_on_failure=True), BuildMode.DEV,
            rollback_on_failure=True,
        )
        assert outcome.rolled_back is False
        assert outcome.cleanup_performed is True
        assert S.ROLLING_BACK in outcome.transitions


class TestRollbackOperation:
    def test_no_prior_revision(self, react_project: Path):
        rig = Rig()
        profile = inspect(react_project)
        rig.manager.deploy(profile, DeploySpec(), BuildMode.DEV)

        outcome = rig.manager.rollback(profile, "default")
        assert isinstance(outcome.error, NoPriorRevision)
        assert outcome.exit_code == 3
        assert outcome.stage == "rollback"

    def test_rollback_healthy(self, react_project: Path):
        rig = Rig()
        profile = inspect(react_project)
        first = rig.manager.deploy(profile, DeploySpec(), BuildMode.DEV)
        (react_project / "src" / "index.jsx").write_text("// v2\n")
        rig.manager.deploy(profile, DeploySpec(), BuildMode.DEV)

        outcome = rig.manager.rollback(profile, "default")
        assert outcome.ok
        assert outcome.state is S.HEALTHY
        assert outcome.rolled_back is True
        stored = rig.api.objects[("Deployment", "default", first.manifests.name)]
        assert stored["spec"]["template"]["spec"]["containers"][0]["image"] == first.build.image.reference


# ═══════════════════════════════════════════════════════════════════
#  Cleanup operation
# ═══════════════════════════════════════════════════════════════════


class TestCleanupOperation:
    def test_removes_everything(self, react_project: Path):
        rig = Rig()
        profile = inspect(react_project)
        rig.manager.deploy(profile, DeploySpec(autoscale=True), BuildMode.DEV)

        outcome = rig.manager.cleanup(profile, "default")
        assert outcome.ok
        assert len(outcome.deleted) == 3
        assert rig.api.objects == {}

    def test_incomplete_cleanup_exit_three(self, react_project: Path):
        rig = Rig(api=MockClusterApi(fail_delete={"Service"}))
        profile = inspect(react_project)
        rig.manager.deploy(profile, DeploySpec(), BuildMode.DEV)

        outcome = rig.manager.cleanup(profile, "default")
        assert isinstance(outcome.error, ClusterApplyError)
        assert outcome.exit_code == 3
        assert outcome.stage == "delete"
        assert outcome.state is S.FAILED
        assert len(outcome.deleted) == 1

    def test_cluster_unavailable(self, react_project: Path):
        rig = Rig(api=MockClusterApi(available=False))
        outcome = rig.manager.cleanup(inspect(react_project), "default")
        assert isinstance(outcome.error, ClusterApplyError)
        assert outcome.stage == "delete"


# ═══════════════════════════════════════════════════════════════════
#  Mutual exclusion
# ═══════════════════════════════════════════════════════════════════


class TestConcurrency:
    def test_same_deploy_id_one_busy(self, react_project: Path):
        release = threading.Event()
        rig = Rig(build=MockBuildBackend(block_until=release))
        profile = inspect(react_project)
        results = {}

        worker = threading.Thread(
            target=lambda: results.setdefault("first", rig.manager.deploy(profile, DeploySpec(), BuildMode.DEV)),
        )
        worker.start()
        while rig.build.builds == 0:
            release.wait(0.01)

        second = rig.manager.deploy(profile, DeploySpec(), BuildMode.DEV)
        release.set()
        worker.join(timeout=5)
        first = results["first"]

        assert isinstance(second.error, DeployBusy)
        assert second.exit_code == 4
        assert second.transitions == [S.LOCKING, S.IDLE]
        assert first.ok
        reached = [o for o in (first, second) if S.APPLYING in o.transitions]
        assert reached == [first]

    def test_cleanup_blocked_by_running_deploy(self, react_project: Path):
        release = threading.Event()
        rig = Rig(build=MockBuildBackend(block_until=release))
        profile = inspect(react_project)

        worker = threading.Thread(target=rig.manager.deploy, args=(profile, DeploySpec(), BuildMode.DEV))
        worker.start()
        while rig.build.builds == 0:
            release.wait(0.01)

        outcome = rig.manager.cleanup(profile, "default")
        release.set()
        worker.join(timeout=5)

        assert isinstance(outcome.error, DeployBusy)
        assert rig.api.operations("delete") == []

    def test_distinct_deploy_ids_proceed(self, react_project: Path):
        release = threading.Event()
        locks = LockRegistry()
        blocked = Rig(build=MockBuildBackend(block_until=release), locks=locks)
        free = Rig(locks=locks)
        profile = inspect(react_project)

        worker = threading.Thread(
            target=blocked.manager.deploy, args=(profile, DeploySpec(namespace="a"), BuildMode.DEV),
        )
        worker.start()
        while blocked.build.builds == 0:
            release.wait(0.01)

        other = free.manager.deploy(profile, DeploySpec(namespace="b"), BuildMode.DEV)
        release.set()
        worker.join(timeout=5)

        assert other.ok
        assert other.state is S.HEALTHY
