"""
Dockerfile generator — build recipes per framework kind and mode.

Every deployable FrameworkKind has an entry in ``_RECIPES``; the build
pipeline fails fast if one is missing instead of guessing.

Dev recipes are single-stage: install everything, copy the source, run
the framework's dev server. The dev workload may mount the live project
tree over the copied source; the image stays runnable on its own.

Prod recipes are multi-stage: a builder stage compiles the app, the
runtime stage carries only build artifacts and production dependencies
and runs as the image's uid 1000 user.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from kubeship.core.models.deploy import BuildMode
from kubeship.core.models.project import FrameworkKind, PackageManager, ProjectProfile
from kubeship.core.models.template import GeneratedFile


# ── Package manager vocabulary ──────────────────────────────────


@dataclass(frozen=True)
class _Toolchain:
    image: str
    user: str
    manifests: str
    install_locked: str
    install: str
    install_prod_locked: str
    install_prod: str
    run: str
    args_sep: str

    def install_cmd(self, locked: bool) -> str:
        return self.install_locked if locked else self.install

    def install_prod_cmd(self, locked: bool) -> str:
        return self.install_prod_locked if locked else self.install_prod


_NODE_IMAGE = "node:20-alpine"
_BUN_IMAGE = "oven/bun:1-alpine"

_TOOLCHAINS: dict[PackageManager, _Toolchain] = {
    PackageManager.NPM: _Toolchain(
        image=_NODE_IMAGE,
        user="node",
        manifests="package*.json",
        install_locked="npm ci",
        install="npm install",
        install_prod_locked="npm ci --omit=dev",
        install_prod="npm install --omit=dev",
        run="npm run",
        args_sep=" --",
    ),
    PackageManager.YARN: _Toolchain(
        image=_NODE_IMAGE,
        user="node",
        manifests="package.json yarn.lock*",
        install_locked="yarn install --frozen-lockfile",
        install="yarn install",
        install_prod_locked="yarn install --frozen-lockfile --production",
        install_prod="yarn install --production",
        run="yarn",
        args_sep="",
    ),
    PackageManager.BUN: _Toolchain(
        image=_BUN_IMAGE,
        user="bun",
        manifests="package.json bun.lock*",
        install_locked="bun install --frozen-lockfile",
        install="bun install",
        install_prod_locked="bun install --frozen-lockfile --production",
        install_prod="bun install --production",
        run="bun run",
        args_sep="",
    ),
}


def toolchain_for(manager: PackageManager) -> _Toolchain:
    """Toolchain for ``manager``; unknown falls back to npm."""
    return _TOOLCHAINS.get(manager, _TOOLCHAINS[PackageManager.NPM])


# ── Shared fragments ────────────────────────────────────────────


_BUILDER_BANNER = "# ── Build stage ─────────────────────────────────────────────────"
_RUNTIME_BANNER = "# ── Runtime stage ───────────────────────────────────────────────"

# Locates the static bundle whatever the bundler called its output dir
_COLLECT_STATIC = (
    'RUN mkdir -p /out && cp -r "$(dirname "$(find dist build -name index.html '
    '2>/dev/null | sort | head -n 1)")"/. /out/'
)


def _header(tc: _Toolchain, locked: bool, stage: str = "") -> list[str]:
    suffix = f" AS {stage}" if stage else ""
    return [
        f"FROM {tc.image}{suffix}",
        "",
        "WORKDIR /app",
        "",
        "# Install dependencies first for layer caching",
        f"COPY {tc.manifests} ./",
        f"RUN {tc.install_cmd(locked)}",
        "",
        "COPY . .",
    ]


def _env(mode: BuildMode, port: int) -> list[str]:
    return [
        f"ENV NODE_ENV={mode.node_env} PORT={port}",
        "",
        f"EXPOSE {port}",
    ]


def _shell_cmd(command: str) -> str:
    # Shell form so $PORT expands at container start
    return f'CMD ["sh", "-c", "{command}"]'


def _join(lines: list[str]) -> str:
    return "\n".join(lines).rstrip() + "\n"


# ── Dev recipes (single stage) ──────────────────────────────────


def _dev(tc: _Toolchain, locked: bool, port: int, command: str) -> str:
    return _join([
        *_header(tc, locked),
        "",
        *_env(BuildMode.DEV, port),
        "",
        _shell_cmd(command),
    ])


def _dev_command(kind: FrameworkKind, tc: _Toolchain, entry: str) -> str:
    host_port = f"{tc.args_sep} --host 0.0.0.0 --port $PORT"
    if kind is FrameworkKind.REACT:
        # CRA reads HOST/PORT from the environment; vite takes flags
        return f"HOST=0.0.0.0 {tc.run} start"
    if kind is FrameworkKind.ANGULAR:
        return "npx ng serve --host 0.0.0.0 --port $PORT"
    if kind is FrameworkKind.MERN:
        return f"node {entry}"
    if kind is FrameworkKind.BUN_DEFAULT:
        return f"bun --watch {entry}"
    if kind is FrameworkKind.REMIX:
        return f"{tc.run} dev"
    return f"{tc.run} dev{host_port}"


# ── Prod recipes (multi-stage) ──────────────────────────────────


def _prod_static(tc: _Toolchain, locked: bool, port: int, _entry: str) -> str:
    """SPA / static site: compile, then serve the bundle."""
    serve_tc = toolchain_for(PackageManager.NPM)
    return _join([
        _BUILDER_BANNER,
        *_header(tc, locked, "builder"),
        f"RUN {tc.run} build",
        _COLLECT_STATIC,
        "",
        _RUNTIME_BANNER,
        f"FROM {serve_tc.image}",
        "",
        "WORKDIR /app",
        "",
        "RUN npm install -g serve@14",
        "",
        f"COPY --from=builder --chown={serve_tc.user}:{serve_tc.user} /out ./public",
        "",
        *_env(BuildMode.PROD, port),
        "",
        f"USER {serve_tc.user}",
        "",
        _shell_cmd("serve -s public -l tcp://0.0.0.0:$PORT"),
    ])


def _prod_remix(tc: _Toolchain, locked: bool, port: int, _entry: str) -> str:
    """Server-rendered: compiled server bundle plus production deps."""
    return _join([
        _BUILDER_BANNER,
        *_header(tc, locked, "builder"),
        f"RUN {tc.run} build",
        "",
        _RUNTIME_BANNER,
        f"FROM {tc.image}",
        "",
        "WORKDIR /app",
        "",
        f"COPY {tc.manifests} ./",
        f"RUN {tc.install_prod_cmd(locked)}",
        "",
        f"COPY --from=builder --chown={tc.user}:{tc.user} /app/build ./build",
        f"COPY --from=builder --chown={tc.user}:{tc.user} /app/public ./public",
        "",
        *_env(BuildMode.PROD, port),
        "",
        f"USER {tc.user}",
        "",
        f'CMD ["{tc.run.split()[0]}", "run", "start"]',
    ])


def _prod_mern(tc: _Toolchain, locked: bool, port: int, entry: str) -> str:
    """Express server with a compiled client bundle beside it."""
    return _join([
        _BUILDER_BANNER,
        *_header(tc, locked, "builder"),
        f"RUN if [ -f client/package.json ]; then cd client && {tc.install} && {tc.run} build; fi",
        "RUN rm -rf node_modules client/node_modules",
        "",
        _RUNTIME_BANNER,
        f"FROM {tc.image}",
        "",
        "WORKDIR /app",
        "",
        f"COPY {tc.manifests} ./",
        f"RUN {tc.install_prod_cmd(locked)}",
        "",
        f"COPY --from=builder --chown={tc.user}:{tc.user} /app ./",
        "",
        *_env(BuildMode.PROD, port),
        "",
        f"USER {tc.user}",
        "",
        f'CMD ["node", "{entry}"]',
    ])


def _prod_bun(tc: _Toolchain, locked: bool, port: int, entry: str) -> str:
    """Bun server: production deps and source, run by the bun runtime."""
    bun = toolchain_for(PackageManager.BUN)
    return _join([
        _BUILDER_BANNER,
        f"FROM {bun.image} AS builder",
        "",
        "WORKDIR /app",
        "",
        f"COPY {tc.manifests} ./",
        f"RUN {bun.install_prod_cmd(locked and tc is bun)}",
        "",
        "COPY . .",
        "",
        _RUNTIME_BANNER,
        f"FROM {bun.image}",
        "",
        "WORKDIR /app",
        "",
        f"COPY --from=builder --chown={bun.user}:{bun.user} /app ./",
        "",
        *_env(BuildMode.PROD, port),
        "",
        f"USER {bun.user}",
        "",
        f'CMD ["bun", "run", "{entry}"]',
    ])


_ProdRecipe = Callable[[_Toolchain, bool, int, str], str]

_RECIPES: dict[FrameworkKind, _ProdRecipe] = {
    FrameworkKind.BUN_DEFAULT: _prod_bun,
    FrameworkKind.REACT: _prod_static,
    FrameworkKind.VUE: _prod_static,
    FrameworkKind.SVELTE: _prod_static,
    FrameworkKind.ANGULAR: _prod_static,
    FrameworkKind.ASTRO: _prod_static,
    FrameworkKind.REMIX: _prod_remix,
    FrameworkKind.MERN: _prod_mern,
}


# ── Public API ──────────────────────────────────────────────────


def supported_kinds() -> list[FrameworkKind]:
    """Framework kinds with a build recipe."""
    return list(_RECIPES)


def render_recipe(
    profile: ProjectProfile,
    mode: BuildMode,
    package_manager: PackageManager,
) -> str | None:
    """Render the Dockerfile text for ``profile``.

    Returns:
        Recipe text, or None if the framework kind has no recipe.
    """
    recipe = _RECIPES.get(profile.framework_kind)
    if recipe is None:
        return None

    tc = toolchain_for(package_manager)
    locked = profile.has_lockfile and profile.package_manager == package_manager
    port = profile.declared_port or 3000
    entry = profile.entry_point or "index.js"

    if mode is BuildMode.DEV:
        return _dev(tc, locked, port, _dev_command(profile.framework_kind, tc, entry))
    return recipe(tc, locked, port, entry)


def generate_dockerfile(
    profile: ProjectProfile,
    mode: BuildMode,
    package_manager: PackageManager,
    *,
    output_path: str = "Dockerfile",
) -> GeneratedFile | None:
    """Wrap the recipe as a GeneratedFile for ``kubeship render``."""
    content = render_recipe(profile, mode, package_manager)
    if content is None:
        return None

    return GeneratedFile(
        path=output_path,
        content=content,
        overwrite=False,
        reason=f"{mode.value} Dockerfile for {profile.framework_kind.value} ({package_manager.value})",
    )
