"""
Error taxonomy — every failure the orchestrator can report.

Each error carries the process exit code the CLI maps it to and the
pipeline stage at which it occurred. Stage errors abort the remaining
stages of an invocation; the lifecycle manager decides what happens to
resources that were already applied.

Exit codes:
    0  healthy rollout
    1  detection / validation / configuration failure
    2  image build failure
    3  apply or rollout failure (failed, timed out, no prior revision)
    4  another operation holds the deploy lock
"""

from __future__ import annotations


class KubeshipError(Exception):
    """Base class for all orchestrator errors."""

    exit_code: int = 1
    stage: str = ""

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    @property
    def reason(self) -> str:
        """Machine-readable reason, e.g. ``ImageBuildError``."""
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "reason": self.reason,
            "stage": self.stage,
            "message": str(self),
            "exit_code": self.exit_code,
        }


class ConfigError(KubeshipError):
    """Raised when kubeship.yml is unreadable or invalid."""

    stage = "config"


class UnsupportedFramework(KubeshipError):
    """No known framework marker set matched the project."""

    stage = "inspect"


class InvalidDeploySpec(KubeshipError):
    """Deploy parameters are out of bounds. Raised before any I/O."""

    stage = "validate"


class InvalidScalingBounds(InvalidDeploySpec):
    """Replica bounds or utilization thresholds are invalid."""


class ManifestConsistencyError(KubeshipError):
    """Generated documents disagree on labels, selectors, or names."""

    stage = "synthesize"


class ImageBuildError(KubeshipError):
    """The build backend failed. Never retried automatically."""

    exit_code = 2

    def __init__(self, stage: str, cause: str) -> None:
        super().__init__(f"image build failed at {stage}: {cause}", stage=stage)
        self.cause = cause

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["cause"] = self.cause
        return data


class ClusterApplyError(KubeshipError):
    """A cluster-side write failed. Safe to re-run: apply is idempotent."""

    exit_code = 3
    stage = "apply"


class RolloutFailed(KubeshipError):
    """The cluster reported a terminal rollout failure."""

    exit_code = 3
    stage = "watch"


class RolloutTimeout(KubeshipError):
    """Resources exist but did not become ready before the deadline."""

    exit_code = 3
    stage = "watch"


class NoPriorRevision(KubeshipError):
    """Rollback requested but no earlier image is recorded."""

    exit_code = 3
    stage = "rollback"


class DeployBusy(KubeshipError):
    """Another deploy/cleanup holds the lock for this deploy id."""

    exit_code = 4
    stage = "lock"

    def __init__(self, deploy_id: str, holder: str = "") -> None:
        detail = f" (held by {holder})" if holder else ""
        super().__init__(f"deploy {deploy_id} is busy{detail}")
        self.deploy_id = deploy_id
        self.holder = holder


class DeployCancelled(KubeshipError):
    """An interrupt aborted a suspension point (build or watch)."""

    exit_code = 3

    def __init__(self, stage: str) -> None:
        super().__init__(f"cancelled during {stage}", stage=stage)
        if stage == "build":
            self.exit_code = 2
