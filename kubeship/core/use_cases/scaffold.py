"""
Scaffold use cases — ``init`` and ``render``.

Both write into the project tree and never touch a backend. ``render``
computes the same content-addressed image tag a deploy would use, so the
rendered manifests match what ``deploy`` applies for unchanged sources.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from kubeship.core.config.loader import PROJECT_CONFIG_FILE, load_config
from kubeship.core.errors import ImageBuildError, KubeshipError
from kubeship.core.models.project import ProjectProfile
from kubeship.core.models.template import GeneratedFile
from kubeship.core.services.generators.dockerfile import generate_dockerfile
from kubeship.core.services.generators.dockerignore import generate_dockerignore
from kubeship.core.services.image_build import image_ref_for, resolve_package_manager
from kubeship.core.services.k8s_generate import render_manifest_file, synthesize
from kubeship.core.use_cases.deploy import (
    DeployOptions,
    build_spec,
    inspect_project,
    requested_package_manager,
)

logger = logging.getLogger(__name__)


@dataclass
class ScaffoldResult:
    """Files produced by init / render."""

    project_root: Path
    profile: ProjectProfile | None = None
    files: list[GeneratedFile] = field(default_factory=list)
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    image: str = ""
    error: KubeshipError | None = None

    @property
    def exit_code(self) -> int:
        return self.error.exit_code if self.error else 0

    def to_dict(self) -> dict:
        result: dict = {"project_root": str(self.project_root)}
        if self.error:
            result["error"] = self.error.to_dict()
            return result
        result["framework"] = self.profile.framework_kind.value if self.profile else ""
        if self.image:
            result["image"] = self.image
        result["written"] = self.written
        result["skipped"] = self.skipped
        return result


def write_generated_file(project_root: Path, file: GeneratedFile) -> bool:
    """Write ``file`` under ``project_root``.

    Returns:
        False if the target exists and ``file.overwrite`` is not set.
    """
    target = project_root / file.path
    if target.exists() and not file.overwrite:
        logger.info("Keeping existing %s", file.path)
        return False
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(file.content, encoding="utf-8")
    logger.info("Wrote %s", target)
    return True


def _write_all(result: ScaffoldResult, force: bool) -> None:
    for file in result.files:
        if force:
            file = file.model_copy(update={"overwrite": True})
        if write_generated_file(result.project_root, file):
            result.written.append(file.path)
        else:
            result.skipped.append(file.path)


def _config_scaffold(profile: ProjectProfile) -> GeneratedFile:
    data = {
        "name": profile.app_name,
        "type": profile.framework_kind.value,
        "namespace": "default",
        "port": profile.declared_port or 3000,
        "replicas": {"min": 1, "max": 3},
        "autoscale": {"cpu": 70, "memory": 80},
        "rollout": {"interval": 2, "timeout": 120},
        "source_mount": True,
    }
    return GeneratedFile(
        path=PROJECT_CONFIG_FILE,
        content=yaml.safe_dump(data, sort_keys=False),
        overwrite=False,
        reason=f"kubeship config for {profile.framework_kind.value}",
    )


def run_init(project_root: Path, framework: str | None = None, force: bool = False) -> ScaffoldResult:
    """Write kubeship.yml and .dockerignore for the detected framework."""
    result = ScaffoldResult(project_root=project_root)
    try:
        config = load_config(project_root)
        result.profile = inspect_project(project_root, DeployOptions(framework=framework), config)
    except KubeshipError as e:
        result.error = e
        return result

    result.files = [
        _config_scaffold(result.profile),
        generate_dockerignore(result.profile.framework_kind),
    ]
    _write_all(result, force)
    return result


def run_render(
    project_root: Path,
    options: DeployOptions,
    out_dir: str = "k8s",
    force: bool = False,
) -> ScaffoldResult:
    """Write the Dockerfile, .dockerignore, and ``<out_dir>/<name>.yaml``."""
    result = ScaffoldResult(project_root=project_root)
    try:
        config = load_config(project_root)
        profile = inspect_project(project_root, options, config)
        result.profile = profile

        manager = resolve_package_manager(profile, requested_package_manager(options, config))
        dockerfile = generate_dockerfile(profile, options.mode, manager)
        if dockerfile is None:
            raise ImageBuildError("recipe", f"no build recipe for {profile.framework_kind.value}")

        image, _ = image_ref_for(profile, options.mode, dockerfile.content, config.registry)
        result.image = image.reference

        spec = build_spec(profile, config, options)
        manifests = synthesize(profile, image, spec, options.mode, config.health_paths)
    except KubeshipError as e:
        result.error = e
        return result

    result.files = [
        dockerfile,
        generate_dockerignore(profile.framework_kind),
        render_manifest_file(manifests, out_dir),
    ]
    _write_all(result, force)
    return result
