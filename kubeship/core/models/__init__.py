"""
Domain models — pydantic types shared by the orchestrator.

All models are re-exported here for convenient access:

    from kubeship.core.models import ProjectProfile, DeploySpec, ManifestSet
"""

from kubeship.core.models.deploy import (
    MAX_REPLICAS,
    BuildMode,
    BuildResult,
    DeploySpec,
    ImageRef,
)
from kubeship.core.models.manifest import (
    AppliedResource,
    AppliedSet,
    ManifestSet,
    RolloutPhase,
    RolloutStatus,
)
from kubeship.core.models.project import FrameworkKind, PackageManager, ProjectProfile
from kubeship.core.models.receipt import Receipt
from kubeship.core.models.state import DeployRecord, DeployState, OperationRecord
from kubeship.core.models.template import GeneratedFile

__all__ = [
    # deploy.py
    "MAX_REPLICAS",
    "BuildMode",
    "BuildResult",
    "DeploySpec",
    "ImageRef",
    # manifest.py
    "AppliedResource",
    "AppliedSet",
    "ManifestSet",
    "RolloutPhase",
    "RolloutStatus",
    # project.py
    "FrameworkKind",
    "PackageManager",
    "ProjectProfile",
    # receipt.py
    "Receipt",
    # state.py
    "DeployRecord",
    "DeployState",
    "OperationRecord",
    # template.py
    "GeneratedFile",
]
