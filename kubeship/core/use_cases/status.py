"""
Status use case — what kubeship last did in this project.

Reads .kubeship/state.json only; it never asks the cluster.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from kubeship.core.models.state import DeployState
from kubeship.core.persistence.state_file import default_state_path, load_state


@dataclass
class StatusResult:
    """Recorded deployments of one project."""

    project_root: Path
    state_path: Path
    state: DeployState

    @property
    def deployment_count(self) -> int:
        return len(self.state.deployments)

    def to_dict(self) -> dict:
        return {
            "project_root": str(self.project_root),
            "state_path": str(self.state_path),
            "updated_at": self.state.updated_at,
            "deployments": {
                deploy_id: {
                    "app_name": rec.app_name,
                    "framework_kind": rec.framework_kind,
                    "namespace": rec.namespace,
                    "resource_name": rec.resource_name,
                    "mode": rec.mode,
                    "image": rec.image,
                    "previous_image": rec.previous_image,
                    "pod_phases": list(rec.pod_phases),
                    "last": rec.last.model_dump() if rec.last else None,
                }
                for deploy_id, rec in self.state.deployments.items()
            },
        }


def get_status(project_root: Path) -> StatusResult:
    path = default_state_path(project_root)
    return StatusResult(project_root=project_root, state_path=path, state=load_state(path))
