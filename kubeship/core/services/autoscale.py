"""
Autoscale policy — replica bounds checks and the HorizontalPodAutoscaler.

Pure functions; no cluster access.
"""

from __future__ import annotations

from typing import Any

from kubeship.core.errors import InvalidScalingBounds
from kubeship.core.models.deploy import MAX_REPLICAS, DeploySpec


def check_bounds(spec: DeploySpec) -> None:
    """Reject replica bounds or utilization thresholds out of range.

    Raises:
        InvalidScalingBounds: On the first violation found.
    """
    if spec.replica_min < 1:
        raise InvalidScalingBounds(f"replica_min must be >= 1 (got {spec.replica_min})")
    if spec.replica_max > MAX_REPLICAS:
        raise InvalidScalingBounds(
            f"replica_max must be <= {MAX_REPLICAS} (got {spec.replica_max})"
        )
    if spec.replica_min > spec.replica_max:
        raise InvalidScalingBounds(
            f"replica_min ({spec.replica_min}) exceeds replica_max ({spec.replica_max})"
        )
    for label, pct in (("cpu", spec.cpu_threshold_pct), ("memory", spec.mem_threshold_pct)):
        if not 1 <= pct <= 100:
            raise InvalidScalingBounds(f"{label} threshold must be within 1-100% (got {pct})")


def _utilization(resource: str, pct: int) -> dict[str, Any]:
    return {
        "type": "Resource",
        "resource": {
            "name": resource,
            "target": {"type": "Utilization", "averageUtilization": pct},
        },
    }


def compute_autoscaler(
    spec: DeploySpec,
    target_name: str,
    labels: dict[str, str],
) -> dict[str, Any]:
    """autoscaling/v2 HPA scaling the Deployment ``target_name``.

    Raises:
        InvalidScalingBounds: See ``check_bounds``.
    """
    check_bounds(spec)
    return {
        "apiVersion": "autoscaling/v2",
        "kind": "HorizontalPodAutoscaler",
        "metadata": {
            "name": target_name,
            "namespace": spec.namespace,
            "labels": dict(labels),
        },
        "spec": {
            "scaleTargetRef": {
                "apiVersion": "apps/v1",
                "kind": "Deployment",
                "name": target_name,
            },
            "minReplicas": spec.replica_min,
            "maxReplicas": spec.replica_max,
            "metrics": [
                _utilization("cpu", spec.cpu_threshold_pct),
                _utilization("memory", spec.mem_threshold_pct),
            ],
        },
    }
