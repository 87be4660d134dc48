"""
DeployState — local record of what kubeship last did per deploy id.

Serialized to .kubeship/state.json after every operation. It is a
convenience for ``kubeship status``; the cluster stays the source of
truth and deleting this file loses nothing that matters.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

# Operation history kept per deploy id.
MAX_HISTORY = 20


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class OperationRecord(BaseModel):
    """Summary of one deploy / cleanup / rollback run."""

    operation: str = ""          # deploy, cleanup, rollback
    started_at: str = ""
    ended_at: str = ""
    state: str = ""              # terminal lifecycle state
    stage: str = ""              # stage the run ended in
    reason: str = ""             # error class name, empty when healthy
    message: str = ""
    image: str = ""
    reused_image: bool = False
    exit_code: int = 0


class DeployRecord(BaseModel):
    """Everything we remember about one deploy id."""

    deploy_id: str
    app_name: str = ""
    framework_kind: str = ""
    namespace: str = "default"
    resource_name: str = ""
    mode: str = ""
    image: str = ""
    previous_image: str = ""
    pod_phases: list[str] = Field(default_factory=list)   # after the last rollout
    history: list[OperationRecord] = Field(default_factory=list)

    @property
    def last(self) -> OperationRecord | None:
        return self.history[-1] if self.history else None

    def record(self, op: OperationRecord) -> None:
        self.history.append(op)
        del self.history[:-MAX_HISTORY]


class DeployState(BaseModel):
    """Root state document."""

    schema_version: int = 1
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)
    deployments: dict[str, DeployRecord] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def get_or_create(self, deploy_id: str, **kwargs: Any) -> DeployRecord:
        """Return the record for ``deploy_id``, creating it if needed."""
        if deploy_id not in self.deployments:
            self.deployments[deploy_id] = DeployRecord(deploy_id=deploy_id, **kwargs)
        else:
            record = self.deployments[deploy_id]
            for key, value in kwargs.items():
                setattr(record, key, value)
        return self.deployments[deploy_id]
