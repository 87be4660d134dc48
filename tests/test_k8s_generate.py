"""
Tests for k8s_generate — manifest synthesis and its invariants.

Pure functions; no cluster, no subprocess.
"""

from pathlib import Path

import pytest
import yaml

from kubeship.core.errors import InvalidDeploySpec, InvalidScalingBounds, ManifestConsistencyError
from kubeship.core.models.deploy import BuildMode, DeploySpec, ImageRef
from kubeship.core.models.project import FrameworkKind, ProjectProfile
from kubeship.core.services.k8s_generate import (
    check_consistency,
    health_path_for,
    render_manifest_file,
    synthesize,
)
from kubeship.core.services.naming import LABEL_DEPLOY_ID, make_deploy_id


_IMAGE = ImageRef(repository="shop", tag="prod-0123456789abcdef")


def _profile(kind: FrameworkKind = FrameworkKind.MERN) -> ProjectProfile:
    return ProjectProfile(
        root_path=Path("/srv/shop"), framework_kind=kind, entry_point="server.js", declared_port=5000,
    )


def _container(manifests) -> dict:
    return manifests.workload["spec"]["template"]["spec"]["containers"][0]


# ═══════════════════════════════════════════════════════════════════
#  Scenario: MERN, prod, autoscaled, port 4000
# ═══════════════════════════════════════════════════════════════════


class TestMernProdAutoscaled:
    @pytest.fixture
    def manifests(self):
        spec = DeploySpec(port=4000, autoscale=True, replica_min=1, replica_max=10)
        return synthesize(_profile(), _IMAGE, spec, BuildMode.PROD)

    def test_three_documents_in_order(self, manifests):
        assert manifests.kinds == ["Deployment", "Service", "HorizontalPodAutoscaler"]

    def test_container_port_and_env(self, manifests):
        container = _container(manifests)
        assert container["ports"][0]["containerPort"] == 4000
        env = {e["name"]: e["value"] for e in container["env"]}
        assert env["PORT"] == "4000"
        assert env["NODE_ENV"] == "production"

    def test_service_targets_port(self, manifests):
        port = manifests.find("Service")["spec"]["ports"][0]
        assert port["port"] == 4000
        assert port["targetPort"] == 4000

    def test_autoscaler_bounds(self, manifests):
        hpa = manifests.find("HorizontalPodAutoscaler")
        assert hpa["spec"]["minReplicas"] == 1
        assert hpa["spec"]["maxReplicas"] == 10
        assert hpa["spec"]["scaleTargetRef"]["name"] == manifests.name

    def test_prod_resources(self, manifests):
        resources = _container(manifests)["resources"]
        assert resources["limits"] == {"cpu": "2", "memory": "4Gi"}

    def test_probes_use_mern_health_path(self, manifests):
        container = _container(manifests)
        for probe in ("startupProbe", "readinessProbe", "livenessProbe"):
            assert container[probe]["httpGet"] == {"path": "/health", "port": 4000}
        assert container["startupProbe"]["failureThreshold"] == 30

    def test_health_check_timing(self, manifests):
        container = _container(manifests)
        readiness, liveness = container["readinessProbe"], container["livenessProbe"]
        assert (readiness["timeoutSeconds"], readiness["successThreshold"], readiness["failureThreshold"]) == (3, 1, 3)
        assert (liveness["timeoutSeconds"], liveness["successThreshold"], liveness["failureThreshold"]) == (5, 1, 3)
        assert liveness["initialDelaySeconds"] == 15
        assert "initialDelaySeconds" not in container["startupProbe"]

    def test_replicas_left_to_autoscaler(self, manifests):
        assert "replicas" not in manifests.workload["spec"]

    def test_service_session_affinity(self, manifests):
        service = manifests.find("Service")["spec"]
        assert service["sessionAffinity"] == "ClientIP"
        assert service["sessionAffinityConfig"] == {"clientIP": {"timeoutSeconds": 10800}}

    def test_prod_never_mounts_source(self, manifests):
        pod = manifests.workload["spec"]["template"]["spec"]
        assert "volumes" not in pod
        assert "initContainers" not in pod
        assert "volumeMounts" not in _container(manifests)


# ═══════════════════════════════════════════════════════════════════
#  Invariants
# ═══════════════════════════════════════════════════════════════════


class TestInvariants:
    @pytest.mark.parametrize("autoscale", [False, True])
    def test_labels_and_selectors_agree(self, autoscale):
        manifests = synthesize(_profile(), _IMAGE, DeploySpec(autoscale=autoscale), BuildMode.DEV)
        deployment = manifests.workload
        selector = deployment["spec"]["selector"]["matchLabels"]
        pod_labels = deployment["spec"]["template"]["metadata"]["labels"]

        assert selector.items() <= pod_labels.items()
        assert manifests.find("Service")["spec"]["selector"] == selector
        for doc in manifests.documents:
            assert doc["metadata"]["labels"][LABEL_DEPLOY_ID] == manifests.deploy_id
            assert doc["metadata"]["namespace"] == manifests.namespace

    def test_no_autoscaler_without_rpl(self):
        manifests = synthesize(_profile(), _IMAGE, DeploySpec(), BuildMode.DEV)
        assert manifests.kinds == ["Deployment", "Service"]

    def test_deploy_id_matches_naming(self):
        spec = DeploySpec(namespace="web")
        manifests = synthesize(_profile(), _IMAGE, spec, BuildMode.DEV)
        assert manifests.deploy_id == make_deploy_id(Path("/srv/shop"), "mern", "web")
        assert manifests.name == f"shop-{manifests.deploy_id[:8]}"

    def test_yaml_is_deterministic(self):
        spec = DeploySpec(autoscale=True, extra_env={"B": "2", "A": "1"})
        first = synthesize(_profile(), _IMAGE, spec, BuildMode.PROD).to_yaml()
        second = synthesize(_profile(), _IMAGE, spec, BuildMode.PROD).to_yaml()
        assert first == second
        assert len(list(yaml.safe_load_all(first))) == 3

    def test_replicas_start_at_min(self):
        manifests = synthesize(_profile(), _IMAGE, DeploySpec(replica_min=3, replica_max=5), BuildMode.DEV)
        assert manifests.workload["spec"]["replicas"] == 3

    def test_broken_selector_detected(self):
        manifests = synthesize(_profile(), _IMAGE, DeploySpec(), BuildMode.DEV)
        manifests.find("Service")["spec"]["selector"] = {"app": "other"}
        with pytest.raises(ManifestConsistencyError):
            check_consistency(manifests)


# ═══════════════════════════════════════════════════════════════════
#  Validation (before anything is built)
# ═══════════════════════════════════════════════════════════════════


class TestValidation:
    @pytest.mark.parametrize("kwargs", [
        {"replica_min": 0},
        {"replica_min": 4, "replica_max": 2},
        {"replica_max": 11},
    ])
    def test_invalid_bounds(self, kwargs):
        with pytest.raises(InvalidScalingBounds):
            synthesize(_profile(), _IMAGE, DeploySpec(**kwargs), BuildMode.DEV)

    def test_invalid_port(self):
        with pytest.raises(InvalidDeploySpec):
            synthesize(_profile(), _IMAGE, DeploySpec(port=70000), BuildMode.DEV)

    def test_empty_namespace(self):
        with pytest.raises(InvalidDeploySpec):
            synthesize(_profile(), _IMAGE, DeploySpec(namespace=""), BuildMode.DEV)


# ═══════════════════════════════════════════════════════════════════
#  Details
# ═══════════════════════════════════════════════════════════════════


class TestDetails:
    def test_dev_env_and_resources(self):
        container = _container(synthesize(_profile(), _IMAGE, DeploySpec(), BuildMode.DEV))
        env = {e["name"]: e["value"] for e in container["env"]}
        assert env["NODE_ENV"] == "development"
        assert container["resources"]["requests"] == {"cpu": "250m", "memory": "256Mi"}

    def test_extra_env_cannot_override_port(self):
        spec = DeploySpec(port=4000, extra_env={"PORT": "1", "API_URL": "http://api"})
        container = _container(synthesize(_profile(), _IMAGE, spec, BuildMode.DEV))
        env = [(e["name"], e["value"]) for e in container["env"]]
        assert ("PORT", "4000") in env
        assert ("PORT", "1") not in env
        assert ("API_URL", "http://api") in env

    def test_rolling_update_and_security(self):
        deployment = synthesize(_profile(), _IMAGE, DeploySpec(), BuildMode.DEV).workload
        assert deployment["spec"]["strategy"]["rollingUpdate"] == {"maxSurge": "25%", "maxUnavailable": "25%"}
        assert deployment["spec"]["template"]["spec"]["securityContext"]["runAsUser"] == 1000

    def test_health_path_precedence(self):
        assert health_path_for(FrameworkKind.REACT, DeploySpec()) == "/"
        assert health_path_for(FrameworkKind.MERN, DeploySpec()) == "/health"
        assert health_path_for(FrameworkKind.REACT, DeploySpec(), {"react": "/healthz"}) == "/healthz"
        assert health_path_for(FrameworkKind.REACT, DeploySpec(health_path="/ping"), {"react": "/healthz"}) == "/ping"

    def test_render_manifest_file(self):
        manifests = synthesize(_profile(), _IMAGE, DeploySpec(), BuildMode.DEV)
        f = render_manifest_file(manifests, "deploy")
        assert f.path == f"deploy/{manifests.name}.yaml"
        assert f.content == manifests.to_yaml()


# ═══════════════════════════════════════════════════════════════════
#  Dev source mount
# ═══════════════════════════════════════════════════════════════════


class TestDevSourceMount:
    def _pod(self, manifests) -> dict:
        return manifests.workload["spec"]["template"]["spec"]

    def test_project_tree_mounted_over_app(self):
        manifests = synthesize(_profile(), _IMAGE, DeploySpec(), BuildMode.DEV)
        pod = self._pod(manifests)

        volumes = {v["name"]: v for v in pod["volumes"]}
        assert volumes["source"]["hostPath"] == {"path": "/srv/shop", "type": "Directory"}
        assert volumes["node-modules"] == {"name": "node-modules", "emptyDir": {}}
        assert _container(manifests)["volumeMounts"] == [
            {"name": "source", "mountPath": "/app"},
            {"name": "node-modules", "mountPath": "/app/node_modules"},
        ]

    def test_init_container_seeds_dependencies(self):
        manifests = synthesize(_profile(), _IMAGE, DeploySpec(), BuildMode.DEV)
        init = self._pod(manifests)["initContainers"][0]
        assert init["image"] == _IMAGE.reference
        assert init["volumeMounts"] == [{"name": "node-modules", "mountPath": "/deps"}]
        assert "/app/node_modules/." in init["command"][-1]
        assert init["securityContext"]["runAsNonRoot"] is True

    def test_mount_disabled(self):
        manifests = synthesize(_profile(), _IMAGE, DeploySpec(source_mount=False), BuildMode.DEV)
        pod = self._pod(manifests)
        assert "volumes" not in pod
        assert "volumeMounts" not in _container(manifests)

    def test_checks_still_pass_with_mount(self):
        manifests = synthesize(_profile(), _IMAGE, DeploySpec(autoscale=True), BuildMode.DEV)
        check_consistency(manifests)
        assert "replicas" not in manifests.workload["spec"]
