"""
Deploy models — build mode, image references, and deploy parameters.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# Hard ceiling on replicas any deployment may request.
MAX_REPLICAS = 10


class BuildMode(StrEnum):
    """Selected by ``--prod``; drives the recipe and the resource profile."""

    DEV = "dev"
    PROD = "prod"

    @property
    def node_env(self) -> str:
        return "production" if self is BuildMode.PROD else "development"


class ImageRef(BaseModel):
    """A built image: ``repository:tag`` plus the backend's digest."""

    model_config = ConfigDict(frozen=True)

    repository: str
    tag: str
    digest: str | None = None

    @property
    def reference(self) -> str:
        return f"{self.repository}:{self.tag}"

    def __str__(self) -> str:
        return self.reference


class BuildResult(BaseModel):
    """Outcome of ImageBuilder.build.

    ``reused`` is True when the backend already held the
    content-addressed tag and no build ran.
    """

    image: ImageRef
    reused: bool = False
    fingerprint: str = ""
    recipe: str = ""
    package_manager: str = ""


class DeploySpec(BaseModel):
    """Deploy parameters assembled from config file and CLI flags.

    Bounds are checked by the manifest synthesizer and the autoscale
    policy, not here, so that an invalid spec can be reported with the
    right error before any external call.
    """

    namespace: str = "default"
    port: int = 3000
    replica_min: int = 1
    replica_max: int = MAX_REPLICAS
    cpu_threshold_pct: int = 70
    mem_threshold_pct: int = 80
    cleanup_on_failure: bool = False
    autoscale: bool = False
    health_path: str | None = None
    source_mount: bool = True     # dev only: project tree mounted over /app
    extra_env: dict[str, str] = Field(default_factory=dict)
