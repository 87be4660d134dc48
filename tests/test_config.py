"""
Tests for config loading — kubeship.yml parsing and validation.
"""

import textwrap
from pathlib import Path

import pytest

from kubeship.core.config.loader import find_config_file, find_project_root, load_config
from kubeship.core.errors import ConfigError


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path: Path):
        config = load_config(tmp_path)
        assert config.namespace == "default"
        assert config.port is None
        assert config.replicas.min == 1
        assert config.replicas.max == 10
        assert config.rollout.interval == 2.0
        assert config.rollout.timeout == 120.0
        assert config.source_mount is True

    def test_full_file(self, tmp_path: Path):
        (tmp_path / "kubeship.yml").write_text(textwrap.dedent("""\
            name: shop
            type: mern
            namespace: web
            port: 4000
            replicas: {min: 2, max: 6}
            autoscale: {cpu: 60, memory: 75}
            registry: ghcr.io/acme
            package_manager: yarn
            rollout: {interval: 1, timeout: 300}
            health_paths: {react: /healthz}
            source_mount: false
            env:
              API_URL: http://api
        """))
        config = load_config(tmp_path)
        assert config.type == "mern"
        assert config.namespace == "web"
        assert config.port == 4000
        assert (config.replicas.min, config.replicas.max) == (2, 6)
        assert (config.autoscale.cpu, config.autoscale.memory) == (60, 75)
        assert config.registry == "ghcr.io/acme"
        assert config.rollout.timeout == 300
        assert config.health_paths == {"react": "/healthz"}
        assert config.env == {"API_URL": "http://api"}
        assert config.name == "shop"
        assert config.source_mount is False

    def test_yaml_extension(self, tmp_path: Path):
        (tmp_path / "kubeship.yaml").write_text("namespace: staging\n")
        assert load_config(tmp_path).namespace == "staging"
        assert find_config_file(tmp_path) == tmp_path / "kubeship.yaml"

    def test_empty_file(self, tmp_path: Path):
        (tmp_path / "kubeship.yml").write_text("")
        assert load_config(tmp_path).namespace == "default"

    def test_invalid_yaml(self, tmp_path: Path):
        (tmp_path / "kubeship.yml").write_text("namespace: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(tmp_path)

    def test_not_a_mapping(self, tmp_path: Path):
        (tmp_path / "kubeship.yml").write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(tmp_path)

    def test_wrong_types(self, tmp_path: Path):
        (tmp_path / "kubeship.yml").write_text("port: not-a-number\n")
        with pytest.raises(ConfigError) as exc:
            load_config(tmp_path)
        assert exc.value.exit_code == 1
        assert exc.value.stage == "config"

    def test_explicit_missing_path(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path, tmp_path / "nope.yml")


class TestFindProjectRoot:
    def test_walks_up_to_package_json(self, tmp_path: Path):
        (tmp_path / "package.json").write_text("{}")
        nested = tmp_path / "src" / "components"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == tmp_path.resolve()

    def test_falls_back_to_start(self, tmp_path: Path):
        start = tmp_path / "a"
        start.mkdir()
        # tmp_path has no markers, but an ancestor might; only assert the
        # result is the start dir or one of its ancestors
        root = find_project_root(start)
        assert start.resolve() == root or root in start.resolve().parents
