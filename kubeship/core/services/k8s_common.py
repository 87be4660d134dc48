"""
K8s shared constants and low-level helpers.

Imported by the kubectl adapter and the k8s_* services. Must NOT import
from any sibling k8s_* module to avoid circular imports.
"""

from __future__ import annotations

import json
import logging
import subprocess

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════


# Kind -> (apiVersion, kubectl resource name)
K8S_KINDS: dict[str, tuple[str, str]] = {
    "Deployment": ("apps/v1", "deployment"),
    "Service": ("v1", "service"),
    "HorizontalPodAutoscaler": ("autoscaling/v2", "horizontalpodautoscaler"),
    "Namespace": ("v1", "namespace"),
    "Pod": ("v1", "pod"),
}

# Apply order; delete walks it backwards.
APPLY_ORDER = ("Deployment", "Service", "HorizontalPodAutoscaler")


def kubectl_resource(kind: str) -> str:
    """kubectl resource name for a manifest ``kind``."""
    entry = K8S_KINDS.get(kind)
    return entry[1] if entry else kind.lower()


# ═══════════════════════════════════════════════════════════════════
#  Shared Helpers
# ═══════════════════════════════════════════════════════════════════


def _run_kubectl(
    *args: str,
    timeout: int = 15,
    input: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a kubectl command and return the result."""
    logger.debug("kubectl %s", " ".join(args))
    return subprocess.run(
        ["kubectl", *args],
        capture_output=True,
        text=True,
        timeout=timeout,
        input=input,
    )


def _kubectl_available() -> dict:
    """Check if kubectl is installed.

    Uses ``kubectl version --client -o json`` (the ``--short`` flag
    was removed in kubectl v1.28+).
    """
    try:
        result = _run_kubectl("version", "--client", "-o", "json")
        if result.returncode == 0:
            try:
                data = json.loads(result.stdout)
                version = data.get("clientVersion", {}).get("gitVersion", "")
            except (ValueError, AttributeError):
                version = result.stdout.strip()
            return {"available": True, "version": version}
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass

    return {"available": False, "version": None}


def is_not_found(stderr: str) -> bool:
    """kubectl reports a missing object with ``(NotFound)`` or ``not found``."""
    return "NotFound" in stderr or "not found" in stderr
