"""K8s manifest synthesis — Deployment, Service, and optional autoscaler.

Everything here is pure: the same profile, image, spec and mode always
produce the same documents (and the same YAML bytes). Bounds are
validated before anything is built, and the finished set is checked for
label/selector agreement before it is returned.
"""

from __future__ import annotations

import logging
from typing import Any

from kubeship.core.errors import InvalidDeploySpec, ManifestConsistencyError
from kubeship.core.models.deploy import BuildMode, DeploySpec, ImageRef
from kubeship.core.models.manifest import ManifestSet
from kubeship.core.models.project import FrameworkKind, ProjectProfile
from kubeship.core.models.template import GeneratedFile
from kubeship.core.services.autoscale import check_bounds, compute_autoscaler
from kubeship.core.services.naming import (
    LABEL_DEPLOY_ID,
    make_deploy_id,
    resource_labels,
    resource_name,
    selector_labels,
)

logger = logging.getLogger(__name__)


# ── Profiles ────────────────────────────────────────────────────

_RESOURCES: dict[BuildMode, dict[str, dict[str, str]]] = {
    # Small requests so dev pods fit anywhere; loose limits for dev servers
    BuildMode.DEV: {
        "requests": {"cpu": "250m", "memory": "256Mi"},
        "limits": {"cpu": "1", "memory": "1Gi"},
    },
    # Requests are half of limits
    BuildMode.PROD: {
        "requests": {"cpu": "1", "memory": "2Gi"},
        "limits": {"cpu": "2", "memory": "4Gi"},
    },
}

DEFAULT_HEALTH_PATHS: dict[FrameworkKind, str] = {
    FrameworkKind.MERN: "/health",
}
_FALLBACK_HEALTH_PATH = "/"

_RUN_AS_USER = 1000

# Client IP stickiness window, seconds
_SESSION_AFFINITY_TIMEOUT = 10800

_APP_DIR = "/app"


def health_path_for(
    kind: FrameworkKind,
    spec: DeploySpec,
    overrides: dict[str, str] | None = None,
) -> str:
    """Per-run override > per-kind config > built-in default."""
    if spec.health_path:
        return spec.health_path
    if overrides and kind.value in overrides:
        return overrides[kind.value]
    return DEFAULT_HEALTH_PATHS.get(kind, _FALLBACK_HEALTH_PATH)


def validate_deploy_spec(spec: DeploySpec) -> None:
    """Reject an out-of-range spec. Never touches a backend.

    Raises:
        InvalidDeploySpec: Port out of range, or any replica/threshold
            bound violation (as InvalidScalingBounds).
    """
    if not 1 <= spec.port <= 65535:
        raise InvalidDeploySpec(f"port must be within 1-65535 (got {spec.port})")
    if not spec.namespace:
        raise InvalidDeploySpec("namespace must not be empty")
    check_bounds(spec)


# ── Documents ───────────────────────────────────────────────────


def _probe(
    path: str,
    port: int,
    delay: int,
    period: int,
    *,
    timeout: int = 1,
    failures: int = 3,
    successes: int = 1,
) -> dict[str, Any]:
    probe: dict[str, Any] = {
        "httpGet": {"path": path, "port": port},
        "periodSeconds": period,
        "timeoutSeconds": timeout,
        "successThreshold": successes,
        "failureThreshold": failures,
    }
    if delay:
        probe["initialDelaySeconds"] = delay
    return probe


def _build_env(spec: DeploySpec, mode: BuildMode) -> list[dict[str, str]]:
    env = [
        {"name": "PORT", "value": str(spec.port)},
        {"name": "NODE_ENV", "value": mode.node_env},
    ]
    reserved = {"PORT", "NODE_ENV"}
    for key in sorted(spec.extra_env):
        if key in reserved:
            logger.warning("Ignoring env %s: set by kubeship", key)
            continue
        env.append({"name": key, "value": str(spec.extra_env[key])})
    return env


def _mount_source(pod: dict[str, Any], container: dict[str, Any], source: str) -> None:
    """Run the dev server on the live project tree instead of the baked copy.

    The host directory is mounted over ``/app``. An init container copies
    the image's installed ``node_modules`` into an emptyDir mounted back
    over ``/app/node_modules``.
    """
    modules = f"{_APP_DIR}/node_modules"
    pod["volumes"] = [
        {"name": "source", "hostPath": {"path": source, "type": "Directory"}},
        {"name": "node-modules", "emptyDir": {}},
    ]
    pod["initContainers"] = [{
        "name": "node-modules",
        "image": container["image"],
        "imagePullPolicy": container["imagePullPolicy"],
        "command": ["sh", "-c", f"cp -a {modules}/. /deps/ 2>/dev/null || true"],
        "volumeMounts": [{"name": "node-modules", "mountPath": "/deps"}],
        "securityContext": dict(container["securityContext"]),
    }]
    container["volumeMounts"] = [
        {"name": "source", "mountPath": _APP_DIR},
        {"name": "node-modules", "mountPath": modules},
    ]


def _build_deployment(
    name: str,
    image: ImageRef,
    spec: DeploySpec,
    mode: BuildMode,
    health_path: str,
    labels: dict[str, str],
    selector: dict[str, str],
    source: str | None = None,
) -> dict[str, Any]:
    port = spec.port
    container: dict[str, Any] = {
        "name": name,
        "image": image.reference,
        "imagePullPolicy": "IfNotPresent",
        "ports": [{"name": "http", "containerPort": port, "protocol": "TCP"}],
        "env": _build_env(spec, mode),
        "resources": _RESOURCES[mode],
        "startupProbe": _probe(health_path, port, 0, 10, failures=30),
        "readinessProbe": _probe(health_path, port, 5, 10, timeout=3),
        "livenessProbe": _probe(health_path, port, 15, 20, timeout=5),
        "securityContext": {
            "runAsNonRoot": True,
            "runAsUser": _RUN_AS_USER,
            "allowPrivilegeEscalation": False,
        },
    }

    pod: dict[str, Any] = {
        "securityContext": {
            "runAsNonRoot": True,
            "runAsUser": _RUN_AS_USER,
            "fsGroup": _RUN_AS_USER,
        },
        "topologySpreadConstraints": [{
            "maxSkew": 1,
            "topologyKey": "kubernetes.io/hostname",
            "whenUnsatisfiable": "ScheduleAnyway",
            "labelSelector": {"matchLabels": dict(selector)},
        }],
        "containers": [container],
    }
    if mode is BuildMode.DEV and source:
        _mount_source(pod, container, source)

    workload_spec: dict[str, Any] = {}
    # The HPA owns the replica count when one is emitted
    if not spec.autoscale:
        workload_spec["replicas"] = spec.replica_min

    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": name,
            "namespace": spec.namespace,
            "labels": dict(labels),
        },
        "spec": {
            **workload_spec,
            "selector": {"matchLabels": dict(selector)},
            "strategy": {
                "type": "RollingUpdate",
                "rollingUpdate": {"maxSurge": "25%", "maxUnavailable": "25%"},
            },
            "template": {
                "metadata": {
                    "labels": dict(labels),
                    "annotations": {
                        "prometheus.io/scrape": "true",
                        "prometheus.io/port": str(port),
                    },
                },
                "spec": pod,
            },
        },
    }


def _build_service(
    name: str,
    spec: DeploySpec,
    labels: dict[str, str],
    selector: dict[str, str],
) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": name,
            "namespace": spec.namespace,
            "labels": dict(labels),
            "annotations": {
                "prometheus.io/scrape": "true",
                "prometheus.io/port": str(spec.port),
            },
        },
        "spec": {
            "type": "ClusterIP",
            "selector": dict(selector),
            "sessionAffinity": "ClientIP",
            "sessionAffinityConfig": {
                "clientIP": {"timeoutSeconds": _SESSION_AFFINITY_TIMEOUT},
            },
            "ports": [{
                "name": "http",
                "port": spec.port,
                "targetPort": spec.port,
                "protocol": "TCP",
            }],
        },
    }


# ── Consistency ─────────────────────────────────────────────────


def check_consistency(manifests: ManifestSet) -> None:
    """Cross-document invariants of one ManifestSet.

    Raises:
        ManifestConsistencyError: Describing the first mismatch.
    """
    deployment = manifests.find("Deployment")
    service = manifests.find("Service")
    if deployment is None or service is None:
        raise ManifestConsistencyError("manifest set needs a Deployment and a Service")

    match_labels = deployment["spec"]["selector"]["matchLabels"]
    pod_labels = deployment["spec"]["template"]["metadata"]["labels"]
    if any(pod_labels.get(k) != v for k, v in match_labels.items()):
        raise ManifestConsistencyError("Deployment selector does not match its pod labels")
    if service["spec"]["selector"] != match_labels:
        raise ManifestConsistencyError("Service selector differs from Deployment selector")

    hpa = manifests.find("HorizontalPodAutoscaler")
    if hpa is not None:
        target = hpa["spec"]["scaleTargetRef"]["name"]
        if target != deployment["metadata"]["name"]:
            raise ManifestConsistencyError(
                f"autoscaler targets {target!r}, not {deployment['metadata']['name']!r}"
            )

    for doc in manifests.documents:
        labels = doc.get("metadata", {}).get("labels", {})
        if labels.get(LABEL_DEPLOY_ID) != manifests.deploy_id:
            raise ManifestConsistencyError(
                f"{doc.get('kind')} is missing deploy id label {manifests.deploy_id}"
            )


# ── Public API ──────────────────────────────────────────────────


def synthesize(
    profile: ProjectProfile,
    image: ImageRef,
    spec: DeploySpec,
    mode: BuildMode,
    health_paths: dict[str, str] | None = None,
) -> ManifestSet:
    """Produce the ManifestSet for one deployment.

    Args:
        profile: Inspected project.
        image: Image the workload runs.
        spec: Validated deploy parameters.
        mode: Build mode (drives NODE_ENV and the resource profile).
        health_paths: Per-kind health path overrides from config.

    Raises:
        InvalidDeploySpec: Bounds violated (before anything is built).
        ManifestConsistencyError: Internal invariant broken.
    """
    validate_deploy_spec(spec)

    kind = profile.framework_kind
    deploy_id = make_deploy_id(profile.root_path, kind.value, spec.namespace)
    name = resource_name(profile.app_name, deploy_id)
    labels = resource_labels(profile.app_name, name, deploy_id, kind.value)
    selector = selector_labels(name, deploy_id)
    health_path = health_path_for(kind, spec, health_paths)

    documents = [
        _build_deployment(
            name, image, spec, mode, health_path, labels, selector,
            source=str(profile.root_path) if spec.source_mount else None,
        ),
        _build_service(name, spec, labels, selector),
    ]
    if spec.autoscale:
        documents.append(compute_autoscaler(spec, name, labels))

    manifests = ManifestSet(
        deploy_id=deploy_id, name=name, namespace=spec.namespace, documents=documents,
    )
    check_consistency(manifests)

    logger.debug(
        "Synthesized %s for %s (%s)", ", ".join(manifests.kinds), name, deploy_id,
    )
    return manifests


def render_manifest_file(manifests: ManifestSet, out_dir: str = "k8s") -> GeneratedFile:
    """Wrap a ManifestSet as ``<out_dir>/<name>.yaml``."""
    return GeneratedFile(
        path=f"{out_dir}/{manifests.name}.yaml",
        content=manifests.to_yaml(),
        overwrite=False,
        reason=f"{' + '.join(manifests.kinds)} for {manifests.name}",
    )
