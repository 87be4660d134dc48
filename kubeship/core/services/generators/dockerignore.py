"""
.dockerignore generator — keep dependency trees and build output out of
the build context.

The same exclusions drive the image fingerprint (see image_build), so a
change to an ignored file never produces a new image tag.
"""

from __future__ import annotations

from kubeship.core.models.project import FrameworkKind
from kubeship.core.models.template import GeneratedFile


_BASE_IGNORE = """\
# ── Version control ─────────────────────────────────────────────
.git
.gitignore

# ── IDE / Editor ────────────────────────────────────────────────
.vscode
.idea
*.swp
*~

# ── OS files ────────────────────────────────────────────────────
.DS_Store
Thumbs.db

# ── kubeship ────────────────────────────────────────────────────
.kubeship
k8s/
Dockerfile*
.dockerignore
kubeship.yml
kubeship.yaml

# ── Node.js ─────────────────────────────────────────────────────
node_modules
**/node_modules
npm-debug.log*
yarn-debug.log*
yarn-error.log*
.npm
.yarn/cache
coverage
.env*.local
"""

_KIND_PATTERNS: dict[FrameworkKind, str] = {
    FrameworkKind.REACT: "build\ndist",
    FrameworkKind.VUE: "dist",
    FrameworkKind.SVELTE: ".svelte-kit\nbuild\ndist",
    FrameworkKind.ANGULAR: ".angular\ndist",
    FrameworkKind.ASTRO: ".astro\ndist",
    FrameworkKind.REMIX: ".cache\nbuild\npublic/build",
    FrameworkKind.MERN: "client/build\nclient/dist",
    FrameworkKind.BUN_DEFAULT: "dist",
}


def generate_dockerignore(kind: FrameworkKind) -> GeneratedFile:
    """Base exclusions plus the build output dirs of ``kind``."""
    parts = [_BASE_IGNORE.rstrip()]
    extra = _KIND_PATTERNS.get(kind)
    if extra:
        parts.append(f"# ── {kind.value} build output " + "─" * (44 - len(kind.value)) + f"\n{extra}")

    return GeneratedFile(
        path=".dockerignore",
        content="\n\n".join(parts) + "\n",
        overwrite=False,
        reason=f"Generated .dockerignore for {kind.value}",
    )
