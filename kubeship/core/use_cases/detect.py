"""
Detection use case — classify the project and derive its deploy id.

Read-only: no backend is touched and nothing is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from kubeship.core.errors import KubeshipError
from kubeship.core.models.project import ProjectProfile
from kubeship.core.services.naming import resource_name
from kubeship.core.use_cases.deploy import DeployOptions, deploy_id_for

logger = logging.getLogger(__name__)


@dataclass
class DetectResult:
    """Result of the detect use case."""

    project_root: Path
    profile: ProjectProfile | None = None
    namespace: str = ""
    deploy_id: str = ""
    error: KubeshipError | None = None

    @property
    def resource_name(self) -> str:
        if self.profile is None or not self.deploy_id:
            return ""
        return resource_name(self.profile.app_name, self.deploy_id)

    def to_dict(self) -> dict:
        result: dict = {"project_root": str(self.project_root)}
        if self.error:
            result["error"] = self.error.to_dict()
            return result

        assert self.profile is not None
        result["profile"] = self.profile.model_dump(mode="json")
        result["app_name"] = self.profile.app_name
        result["namespace"] = self.namespace
        result["deploy_id"] = self.deploy_id
        result["resource_name"] = self.resource_name
        return result


def run_detect(project_root: Path, framework: str | None = None, namespace: str | None = None) -> DetectResult:
    """Inspect ``project_root`` and compute its deploy id."""
    result = DetectResult(project_root=project_root)
    try:
        profile, ns, deploy_id = deploy_id_for(
            project_root, DeployOptions(framework=framework, namespace=namespace),
        )
    except KubeshipError as e:
        logger.info("Detection failed: %s", e)
        result.error = e
        return result

    result.profile = profile
    result.namespace = ns
    result.deploy_id = deploy_id
    return result
