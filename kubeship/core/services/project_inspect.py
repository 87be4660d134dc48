"""
Project inspection — classify a directory into a FrameworkKind.

Detection is marker based and ordered most-specific first, so composite
stacks are not swallowed by a generic rule: a MERN project also depends
on react, a Remix app also depends on react, an Astro site may embed
react islands. The first matching rule wins.

The scan is read-only, bounded to ``_MAX_DEPTH`` levels, and never
descends into dependency or build output directories. Running it twice
on an unchanged directory yields an identical ProjectProfile.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from kubeship.core.errors import UnsupportedFramework
from kubeship.core.models.project import FrameworkKind, PackageManager, ProjectProfile

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════


_SKIP_DIRS = frozenset({
    ".git", "node_modules", "bower_components", ".yarn", ".pnpm-store",
    "dist", "build", "out", ".next", ".nuxt", ".svelte-kit", ".astro",
    ".angular", ".cache", ".turbo", "coverage", ".kubeship",
    ".venv", "venv", "__pycache__",
})

_MAX_DEPTH = 2

_LOCKFILES: tuple[tuple[str, PackageManager], ...] = (
    ("bun.lockb", PackageManager.BUN),
    ("bun.lock", PackageManager.BUN),
    ("yarn.lock", PackageManager.YARN),
    ("package-lock.json", PackageManager.NPM),
)

_CLIENT_DIRS = ("client", "frontend", "web")

_SERVER_ENTRIES = (
    "server.js", "server.ts", "server.mjs",
    "server/index.js", "server/index.ts", "server/server.js", "server/app.js",
    "backend/server.js", "backend/index.js", "backend/app.js",
)

_CLIENT_FRAMEWORK_DEPS = frozenset({"react", "vue", "@angular/core", "svelte"})

_ENTRY_CANDIDATES: dict[FrameworkKind, tuple[str, ...]] = {
    FrameworkKind.BUN_DEFAULT: ("src/index.ts", "index.ts", "src/index.js", "index.js"),
    FrameworkKind.MERN: _SERVER_ENTRIES,
    FrameworkKind.REACT: (
        "src/index.jsx", "src/index.js", "src/index.tsx",
        "src/main.jsx", "src/main.tsx",
    ),
    FrameworkKind.VUE: ("src/main.js", "src/main.ts"),
    FrameworkKind.SVELTE: ("src/main.js", "src/main.ts", "src/routes/+page.svelte"),
    FrameworkKind.ANGULAR: ("src/main.ts",),
    FrameworkKind.ASTRO: ("src/pages/index.astro", "src/pages/index.md"),
    FrameworkKind.REMIX: ("app/root.tsx", "app/root.jsx"),
}

DEFAULT_PORTS: dict[FrameworkKind, int] = {
    FrameworkKind.BUN_DEFAULT: 3000,
    FrameworkKind.REACT: 3000,
    FrameworkKind.VUE: 8080,
    FrameworkKind.MERN: 5000,
    FrameworkKind.SVELTE: 5173,
    FrameworkKind.ANGULAR: 4200,
    FrameworkKind.ASTRO: 4321,
    FrameworkKind.REMIX: 3000,
}

_ENV_PORT_RE = re.compile(r"^\s*PORT\s*=\s*['\"]?(\d{2,5})['\"]?\s*$", re.MULTILINE)
_SOURCE_PORT_RES = (
    re.compile(r"\.listen\(\s*(\d{2,5})"),
    re.compile(r"PORT\s*(?:\|\||\?\?)\s*(\d{2,5})"),
    re.compile(r"\bport\s*[:=]\s*(\d{2,5})\b"),
)
_SCRIPT_PORT_RE = re.compile(r"--port[ =](\d{2,5})")


# ═══════════════════════════════════════════════════════════════════
#  Scan
# ═══════════════════════════════════════════════════════════════════


@dataclass
class _Scan:
    """Everything the marker rules look at, gathered in one pass."""

    root: Path
    files: frozenset[str]
    package: dict[str, Any] = field(default_factory=dict)
    deps: frozenset[str] = frozenset()
    client_deps: dict[str, frozenset[str]] = field(default_factory=dict)

    def has(self, *rel_paths: str) -> bool:
        return any(p in self.files for p in rel_paths)

    def dep(self, *names: str) -> bool:
        return any(n in self.deps for n in names)

    def dep_prefix(self, prefix: str) -> bool:
        return any(d.startswith(prefix) for d in self.deps)

    @property
    def scripts(self) -> dict[str, str]:
        scripts = self.package.get("scripts")
        return scripts if isinstance(scripts, dict) else {}


def _walk(root: Path, max_depth: int = _MAX_DEPTH) -> frozenset[str]:
    """Relative POSIX paths of files within ``max_depth`` directory levels."""
    found: set[str] = set()

    def _visit(directory: Path, prefix: str, depth: int) -> None:
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError:
            logger.debug("Cannot list %s", directory, exc_info=True)
            return
        for entry in entries:
            rel = f"{prefix}{entry.name}"
            if entry.is_dir(follow_symlinks=False):
                if depth < max_depth and entry.name not in _SKIP_DIRS:
                    _visit(Path(entry.path), f"{rel}/", depth + 1)
            elif entry.is_file():
                found.add(rel)

    _visit(root, "", 0)
    return frozenset(found)


def _read_package(path: Path) -> dict[str, Any]:
    """Parse a package.json, or {} if missing or malformed."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _dependency_names(package: dict[str, Any]) -> frozenset[str]:
    names: set[str] = set()
    for key in ("dependencies", "devDependencies", "peerDependencies"):
        section = package.get(key)
        if isinstance(section, dict):
            names.update(section)
    return frozenset(names)


def _scan(root: Path) -> _Scan:
    files = _walk(root)
    package = _read_package(root / "package.json") if "package.json" in files else {}
    client_deps = {
        d: _dependency_names(_read_package(root / d / "package.json"))
        for d in _CLIENT_DIRS
        if f"{d}/package.json" in files
    }
    return _Scan(
        root=root,
        files=files,
        package=package,
        deps=_dependency_names(package),
        client_deps=client_deps,
    )


# ═══════════════════════════════════════════════════════════════════
#  Marker rules (ordered: most specific first)
# ═══════════════════════════════════════════════════════════════════


def _is_mern(s: _Scan) -> bool:
    if not s.has(*_SERVER_ENTRIES) or s.dep_prefix("@remix-run/"):
        return False
    if any(deps & _CLIENT_FRAMEWORK_DEPS for deps in s.client_deps.values()):
        return True
    # Single-package layout: express server and react client side by side
    return s.dep("express") and s.dep("react")


def _is_remix(s: _Scan) -> bool:
    return s.dep_prefix("@remix-run/") or s.has("remix.config.js", "remix.config.mjs")


def _is_astro(s: _Scan) -> bool:
    return s.dep("astro") or s.has("astro.config.mjs", "astro.config.js", "astro.config.ts")


def _is_angular(s: _Scan) -> bool:
    return s.has("angular.json") or s.dep("@angular/core")


def _is_svelte(s: _Scan) -> bool:
    return s.dep("svelte", "@sveltejs/kit") or s.has("svelte.config.js", "svelte.config.mjs")


def _is_vue(s: _Scan) -> bool:
    return s.dep("vue") or s.has("vue.config.js")


def _is_react(s: _Scan) -> bool:
    return s.dep("react")


def _is_bun(s: _Scan) -> bool:
    if s.has("bun.lockb", "bun.lock", "bunfig.toml") or s.dep("bun-types", "@types/bun"):
        return True
    return any(cmd.lstrip().startswith("bun ") for cmd in s.scripts.values() if isinstance(cmd, str))


_RULES: tuple[tuple[FrameworkKind, Callable[[_Scan], bool]], ...] = (
    (FrameworkKind.MERN, _is_mern),
    (FrameworkKind.REMIX, _is_remix),
    (FrameworkKind.ASTRO, _is_astro),
    (FrameworkKind.ANGULAR, _is_angular),
    (FrameworkKind.SVELTE, _is_svelte),
    (FrameworkKind.VUE, _is_vue),
    (FrameworkKind.REACT, _is_react),
    (FrameworkKind.BUN_DEFAULT, _is_bun),
)


def classify(scan: _Scan) -> FrameworkKind:
    """First matching rule wins; UNKNOWN when none match."""
    for kind, rule in _RULES:
        if rule(scan):
            return kind
    return FrameworkKind.UNKNOWN


# ═══════════════════════════════════════════════════════════════════
#  Build metadata
# ═══════════════════════════════════════════════════════════════════


def _package_manager(s: _Scan) -> tuple[PackageManager, bool]:
    """Package manager implied by the project, and whether a lockfile pins it."""
    for name, manager in _LOCKFILES:
        if name in s.files:
            return manager, True
    declared = s.package.get("packageManager")
    if isinstance(declared, str):
        tool = declared.split("@", 1)[0].strip().lower()
        if tool in {m.value for m in PackageManager}:
            return PackageManager(tool), False
    return PackageManager.UNKNOWN, False


def _entry_point(s: _Scan, kind: FrameworkKind) -> str:
    candidates = _ENTRY_CANDIDATES.get(kind, ())
    for rel in candidates:
        if rel in s.files:
            return rel
    main = s.package.get("main")
    if isinstance(main, str) and main:
        return main.removeprefix("./")
    return candidates[0] if candidates else ""


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return ""


def _valid_port(raw: str) -> int | None:
    port = int(raw)
    return port if 1 <= port <= 65535 else None


def _declared_port(s: _Scan, kind: FrameworkKind, entry_point: str) -> int | None:
    """Port from .env, the entry point source, package scripts, or the default."""
    if ".env" in s.files:
        m = _ENV_PORT_RE.search(_read_text(s.root / ".env"))
        if m and (port := _valid_port(m.group(1))):
            return port

    if entry_point and entry_point in s.files:
        source = _read_text(s.root / entry_point)
        for pattern in _SOURCE_PORT_RES:
            m = pattern.search(source)
            if m and (port := _valid_port(m.group(1))):
                return port

    for name in ("start", "dev", "serve"):
        cmd = s.scripts.get(name)
        if isinstance(cmd, str):
            m = _SCRIPT_PORT_RE.search(cmd)
            if m and (port := _valid_port(m.group(1))):
                return port

    return DEFAULT_PORTS.get(kind)


# ═══════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════


def inspect(
    root_path: Path,
    override: FrameworkKind | None = None,
    name: str | None = None,
) -> ProjectProfile:
    """Classify ``root_path`` and extract build metadata.

    Args:
        root_path: Project directory.
        override: Framework kind forced from the CLI; skips classification
            but still derives entry point, port, and package manager.
        name: Application name from config; the directory name otherwise.

    Raises:
        UnsupportedFramework: No marker matched and no override was given,
            the override is ``unknown``, or ``root_path`` is not a directory.
    """
    root = root_path.resolve()
    if not root.is_dir():
        raise UnsupportedFramework(f"Not a project directory: {root}")

    if override is FrameworkKind.UNKNOWN:
        raise UnsupportedFramework("Framework override 'unknown' is not deployable")

    scan = _scan(root)
    kind = override or classify(scan)
    if kind is FrameworkKind.UNKNOWN:
        raise UnsupportedFramework(
            f"No supported framework detected in {root}. "
            f"Pass --type with one of: {', '.join(FrameworkKind.choices())}"
        )

    manager, has_lockfile = _package_manager(scan)
    entry = _entry_point(scan, kind)
    profile = ProjectProfile(
        root_path=root,
        framework_kind=kind,
        entry_point=entry,
        declared_port=_declared_port(scan, kind, entry),
        package_manager=manager,
        has_lockfile=has_lockfile,
        name=name or None,
    )
    logger.info(
        "Detected %s in %s (entry=%s, port=%s, pm=%s%s)",
        kind.value, root, entry or "-", profile.declared_port,
        manager.value, ", locked" if has_lockfile else "",
    )
    return profile
