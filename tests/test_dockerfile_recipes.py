"""
Tests for the Dockerfile and .dockerignore generators.

Pure string output. No docker, no subprocess.
"""

from pathlib import Path

import pytest

from kubeship.core.models.deploy import BuildMode
from kubeship.core.models.project import FrameworkKind, PackageManager, ProjectProfile
from kubeship.core.services.generators.dockerfile import (
    generate_dockerfile,
    render_recipe,
    supported_kinds,
)
from kubeship.core.services.generators.dockerignore import generate_dockerignore


def _profile(kind: FrameworkKind, **overrides) -> ProjectProfile:
    fields = {
        "root_path": Path("/srv/app"),
        "framework_kind": kind,
        "entry_point": "server.js" if kind is FrameworkKind.MERN else "",
        "declared_port": 3000,
    }
    fields.update(overrides)
    return ProjectProfile(**fields)


_DEPLOYABLE = [k for k in FrameworkKind if k is not FrameworkKind.UNKNOWN]


class TestRecipeTable:
    def test_every_deployable_kind_has_a_recipe(self):
        assert set(supported_kinds()) == set(_DEPLOYABLE)

    def test_unknown_has_no_recipe(self):
        profile = _profile(FrameworkKind.UNKNOWN)
        assert render_recipe(profile, BuildMode.PROD, PackageManager.NPM) is None
        assert generate_dockerfile(profile, BuildMode.PROD, PackageManager.NPM) is None

    @pytest.mark.parametrize("kind", _DEPLOYABLE)
    @pytest.mark.parametrize("mode", list(BuildMode))
    def test_recipe_sets_port_and_node_env(self, kind, mode):
        recipe = render_recipe(_profile(kind, declared_port=4321), mode, PackageManager.NPM)
        assert recipe is not None
        assert f"NODE_ENV={mode.node_env}" in recipe
        assert "PORT=4321" in recipe
        assert "EXPOSE 4321" in recipe

    def test_recipes_are_deterministic(self):
        profile = _profile(FrameworkKind.REACT)
        first = render_recipe(profile, BuildMode.PROD, PackageManager.NPM)
        assert render_recipe(profile, BuildMode.PROD, PackageManager.NPM) == first


class TestProdRecipes:
    def test_static_is_multi_stage(self):
        recipe = render_recipe(_profile(FrameworkKind.VUE), BuildMode.PROD, PackageManager.NPM)
        assert recipe.count("FROM ") == 2
        assert " AS builder" in recipe
        assert "npm run build" in recipe
        assert "serve -s public" in recipe
        assert "USER node" in recipe

    def test_mern_runs_entry_point(self):
        recipe = render_recipe(_profile(FrameworkKind.MERN), BuildMode.PROD, PackageManager.NPM)
        assert 'CMD ["node", "server.js"]' in recipe
        assert "--omit=dev" in recipe

    def test_bun_uses_bun_image(self):
        profile = _profile(FrameworkKind.BUN_DEFAULT, entry_point="src/index.ts")
        recipe = render_recipe(profile, BuildMode.PROD, PackageManager.BUN)
        assert "oven/bun:1-alpine" in recipe
        assert 'CMD ["bun", "run", "src/index.ts"]' in recipe
        assert "USER bun" in recipe

    def test_remix_copies_build_output(self):
        recipe = render_recipe(_profile(FrameworkKind.REMIX), BuildMode.PROD, PackageManager.YARN)
        assert "/app/build ./build" in recipe
        assert "yarn build" in recipe


class TestInstallCommands:
    def test_locked_npm_uses_ci(self):
        profile = _profile(FrameworkKind.REACT, package_manager=PackageManager.NPM, has_lockfile=True)
        assert "RUN npm ci" in render_recipe(profile, BuildMode.DEV, PackageManager.NPM)

    def test_unlocked_npm_uses_install(self):
        recipe = render_recipe(_profile(FrameworkKind.REACT), BuildMode.DEV, PackageManager.NPM)
        assert "RUN npm install" in recipe
        assert "npm ci" not in recipe

    def test_lockfile_of_other_manager_not_used(self):
        """A yarn lockfile does not make an npm install frozen."""
        profile = _profile(FrameworkKind.VUE, package_manager=PackageManager.YARN, has_lockfile=True)
        recipe = render_recipe(profile, BuildMode.DEV, PackageManager.NPM)
        assert "npm ci" not in recipe

    def test_yarn_frozen_lockfile(self):
        profile = _profile(FrameworkKind.VUE, package_manager=PackageManager.YARN, has_lockfile=True)
        recipe = render_recipe(profile, BuildMode.DEV, PackageManager.YARN)
        assert "yarn install --frozen-lockfile" in recipe
        assert "COPY package.json yarn.lock* ./" in recipe


class TestDevRecipes:
    def test_single_stage(self):
        recipe = render_recipe(_profile(FrameworkKind.SVELTE), BuildMode.DEV, PackageManager.NPM)
        assert recipe.count("FROM ") == 1
        assert "--host 0.0.0.0 --port $PORT" in recipe

    def test_angular_dev_server(self):
        recipe = render_recipe(_profile(FrameworkKind.ANGULAR), BuildMode.DEV, PackageManager.NPM)
        assert "ng serve --host 0.0.0.0" in recipe


class TestGeneratedFiles:
    def test_dockerfile_wrapper(self):
        f = generate_dockerfile(_profile(FrameworkKind.REACT), BuildMode.PROD, PackageManager.NPM)
        assert f.path == "Dockerfile"
        assert f.overwrite is False
        assert "prod" in f.reason

    def test_dockerignore_has_node_modules(self):
        f = generate_dockerignore(FrameworkKind.REACT)
        assert f.path == ".dockerignore"
        assert "node_modules" in f.content
        assert "react build output" in f.content

    def test_dockerignore_unknown_kind_is_base_only(self):
        f = generate_dockerignore(FrameworkKind.UNKNOWN)
        assert "build output" not in f.content
