"""
Image builder — content-addressed container builds.

The image tag is ``<mode>-<fingerprint[:16]>`` where the fingerprint
hashes the recipe, the project path, and every source file. Before
building, the backend is asked explicitly whether the tag already
exists; if it does the build is skipped and the result says so
(``reused=True``). With a registry configured the image is pushed on
every run, reused or not, so an earlier failed push is repaired.
Builds are never retried automatically.

    builder = ImageBuilder(DockerBuildBackend(), registry="ghcr.io/acme")
    result = builder.build(profile, BuildMode.PROD)
    result.image.reference   # ghcr.io/acme/shop:prod-3f9a0c1b2d4e5f60
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
from pathlib import Path

from kubeship.adapters.base import BuildBackend
from kubeship.core.errors import DeployCancelled, ImageBuildError
from kubeship.core.models.deploy import BuildMode, BuildResult, ImageRef
from kubeship.core.models.project import FrameworkKind, PackageManager, ProjectProfile
from kubeship.core.services.generators.dockerfile import render_recipe

logger = logging.getLogger(__name__)


# Directories whose contents never reach the image (mirrors .dockerignore)
_FINGERPRINT_SKIP = frozenset({
    ".git", "node_modules", "bower_components", ".yarn", ".pnpm-store",
    "dist", "build", "out", ".next", ".nuxt", ".svelte-kit", ".astro",
    ".angular", ".cache", ".turbo", "coverage", ".kubeship", "k8s",
    ".venv", "venv", "__pycache__", ".idea", ".vscode",
})

# Written by `kubeship render` or read only by kubeship; the recipe itself is hashed directly
_FINGERPRINT_SKIP_FILES = frozenset({
    ".DS_Store", "Thumbs.db", "Dockerfile", ".dockerignore", "kubeship.yml", "kubeship.yaml",
})


def resolve_package_manager(
    profile: ProjectProfile,
    requested: PackageManager | None = None,
) -> PackageManager:
    """Existing lockfile > explicit flag > framework default."""
    if profile.has_lockfile and profile.package_manager is not PackageManager.UNKNOWN:
        if requested and requested is not profile.package_manager:
            logger.warning(
                "Ignoring package manager %s: project is locked with %s",
                requested.value, profile.package_manager.value,
            )
        return profile.package_manager
    if requested and requested is not PackageManager.UNKNOWN:
        return requested
    if profile.package_manager is not PackageManager.UNKNOWN:
        return profile.package_manager
    if profile.framework_kind is FrameworkKind.BUN_DEFAULT:
        return PackageManager.BUN
    return PackageManager.NPM


def compute_fingerprint(root: Path, recipe: str) -> str:
    """SHA-256 over the recipe, the project path, and all source files.

    Files are visited in sorted order, so the digest only changes when
    content (or the set of files) changes.
    """
    h = hashlib.sha256()
    h.update(recipe.encode("utf-8"))
    h.update(b"\0")
    h.update(str(root.resolve()).encode("utf-8"))

    for rel, path in _source_files(root):
        h.update(b"\0")
        h.update(rel.encode("utf-8"))
        h.update(b"\0")
        try:
            h.update(path.read_bytes())
        except OSError as e:
            logger.debug("Fingerprint: cannot read %s: %s", path, e)

    return h.hexdigest()


def image_ref_for(
    profile: ProjectProfile,
    mode: BuildMode,
    recipe: str,
    registry: str | None = None,
) -> tuple[ImageRef, str]:
    """Content-addressed image reference and the full fingerprint behind it."""
    fingerprint = compute_fingerprint(profile.root_path, recipe)
    repository = f"{registry.rstrip('/')}/{profile.app_name}" if registry else profile.app_name
    return ImageRef(repository=repository, tag=f"{mode.value}-{fingerprint[:16]}"), fingerprint


def _source_files(root: Path) -> list[tuple[str, Path]]:
    files: list[tuple[str, Path]] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in _FINGERPRINT_SKIP)
        base = Path(dirpath)
        for name in filenames:
            if name in _FINGERPRINT_SKIP_FILES:
                continue
            path = base / name
            files.append((path.relative_to(root).as_posix(), path))
    files.sort()
    return files


class ImageBuilder:
    """Builds (or reuses) the image for a ProjectProfile."""

    def __init__(
        self,
        backend: BuildBackend,
        registry: str | None = None,
        package_manager: PackageManager | None = None,
    ) -> None:
        self._backend = backend
        self._registry = registry.rstrip("/") if registry else None
        self._package_manager = package_manager

    def plan(self, profile: ProjectProfile, mode: BuildMode) -> tuple[str, PackageManager]:
        """Resolve the recipe text without touching the backend.

        Raises:
            ImageBuildError: stage ``recipe`` if the kind has no recipe.
        """
        manager = resolve_package_manager(profile, self._package_manager)
        recipe = render_recipe(profile, mode, manager)
        if recipe is None:
            raise ImageBuildError(
                "recipe", f"no build recipe for framework {profile.framework_kind.value}",
            )
        return recipe, manager

    def build(
        self,
        profile: ProjectProfile,
        mode: BuildMode,
        cancel: threading.Event | None = None,
    ) -> BuildResult:
        """Build the image for ``profile`` in ``mode``.

        Raises:
            ImageBuildError: At stage recipe, backend, inspect, build or push.
            DeployCancelled: ``cancel`` was set while building.
        """
        recipe, manager = self.plan(profile, mode)

        if not self._backend.is_available():
            raise ImageBuildError("backend", f"build backend '{self._backend.name}' is not available")

        image, fingerprint = image_ref_for(profile, mode, recipe, self._registry)

        existing = self._backend.image_exists(image.reference)
        if existing.failed:
            raise ImageBuildError("inspect", existing.error or "image lookup failed")

        if existing.metadata.get("exists"):
            logger.info("Image %s already built — reusing", image.reference)
            self._push(image.reference)
            return BuildResult(
                image=image.model_copy(update={"digest": existing.metadata.get("digest")}),
                reused=True,
                fingerprint=fingerprint,
                recipe=recipe,
                package_manager=manager.value,
            )

        if cancel is not None and cancel.is_set():
            raise DeployCancelled("build")

        logger.info(
            "Building %s (%s, %s, %s)",
            image.reference, profile.framework_kind.value, mode.value, manager.value,
        )
        receipt = self._backend.build(image.reference, recipe, profile.root_path, cancel)
        if receipt.metadata.get("cancelled"):
            raise DeployCancelled("build")
        if receipt.failed:
            if receipt.output:
                logger.error("Build output (tail):\n%s", receipt.output)
            raise ImageBuildError("build", receipt.error or "build failed")

        self._push(image.reference)

        return BuildResult(
            image=image.model_copy(update={"digest": receipt.metadata.get("digest")}),
            reused=False,
            fingerprint=fingerprint,
            recipe=recipe,
            package_manager=manager.value,
        )

    def _push(self, reference: str) -> None:
        """Push to the registry, if one is configured. Idempotent on the registry side."""
        if not self._registry:
            return
        pushed = self._backend.push(reference)
        if pushed.failed:
            raise ImageBuildError("push", pushed.error or "push failed")
        logger.info("Pushed %s", reference)
