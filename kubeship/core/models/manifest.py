"""
Manifest and rollout models — what we send to the cluster and what we
read back while watching it.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

import yaml
from pydantic import BaseModel, Field


class ManifestSet(BaseModel):
    """Ordered documents for one deploy id: Deployment, Service, [HPA].

    Apply in order, delete in reverse.
    """

    deploy_id: str
    name: str
    namespace: str
    documents: list[dict[str, Any]] = Field(default_factory=list)

    def find(self, kind: str) -> dict[str, Any] | None:
        for doc in self.documents:
            if doc.get("kind") == kind:
                return doc
        return None

    @property
    def workload(self) -> dict[str, Any]:
        doc = self.find("Deployment")
        assert doc is not None, "ManifestSet without a Deployment"
        return doc

    @property
    def kinds(self) -> list[str]:
        return [d["kind"] for d in self.documents]

    def to_yaml(self) -> str:
        """Multi-document YAML, stable across runs for identical input."""
        return yaml.safe_dump_all(
            self.documents, sort_keys=False, default_flow_style=False,
        )


class AppliedResource(BaseModel):
    kind: str
    name: str
    action: str = "configured"  # created, configured


class AppliedSet(BaseModel):
    """Result of ClusterController.apply."""

    deploy_id: str
    namespace: str
    workload_name: str
    image: str
    resources: list[AppliedResource] = Field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(1 for r in self.resources if r.action == "created")


class RolloutPhase(StrEnum):
    PROGRESSING = "Progressing"
    HEALTHY = "Healthy"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"

    @property
    def terminal(self) -> bool:
        return self is not RolloutPhase.PROGRESSING


class RolloutStatus(BaseModel):
    """One observation of a workload's rollout. Never persisted as truth."""

    desired_replicas: int = 0
    ready_replicas: int = 0
    unavailable_replicas: int = 0
    phase: RolloutPhase = RolloutPhase.PROGRESSING
    message: str = ""
    polls: int = 0

    @property
    def healthy(self) -> bool:
        return self.phase is RolloutPhase.HEALTHY
