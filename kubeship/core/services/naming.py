"""Deploy identity — deploy ids, resource names, and the label vocabulary.

Every generated resource name and label comes from here so that the
workload, service, and autoscaler of one deployment agree by
construction.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path

LABEL_NAME = "app.kubernetes.io/name"
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_DEPLOY_ID = "kubeship.io/deploy-id"
LABEL_FRAMEWORK = "kubeship.io/framework"

ANNOTATION_PREVIOUS_IMAGE = "kubeship.io/previous-image"

MANAGER = "kubeship"

_INVALID_CHARS = re.compile(r"[^a-z0-9-]+")
_MAX_APP_NAME = 40


def dns_label(raw: str) -> str:
    """Squash an arbitrary string into an RFC 1123 label fragment."""
    name = _INVALID_CHARS.sub("-", raw.lower()).strip("-")
    name = re.sub(r"-{2,}", "-", name)[:_MAX_APP_NAME].rstrip("-")
    return name or "app"


def make_deploy_id(root_path: Path, framework_kind: str, namespace: str) -> str:
    """Stable idempotence key for one project + namespace.

    Re-running deploy for the same project into the same namespace
    yields the same id, hence the same resource names.
    """
    h = hashlib.sha256()
    for part in (str(root_path.resolve()), framework_kind, namespace):
        h.update(part.encode("utf-8"))
        h.update(b"\0")
    return h.hexdigest()[:12]


def resource_name(app_name: str, deploy_id: str) -> str:
    """Name shared by the workload, service, and autoscaler."""
    return f"{app_name}-{deploy_id[:8]}"


def selector_labels(name: str, deploy_id: str) -> dict[str, str]:
    """Labels used as the pod selector. Must never change for a deploy id."""
    return {
        LABEL_INSTANCE: name,
        LABEL_DEPLOY_ID: deploy_id,
    }


def resource_labels(
    app_name: str, name: str, deploy_id: str, framework_kind: str,
) -> dict[str, str]:
    """Full label set stamped on every document and pod template."""
    return {
        LABEL_NAME: app_name,
        **selector_labels(name, deploy_id),
        LABEL_MANAGED_BY: MANAGER,
        LABEL_FRAMEWORK: framework_kind,
    }


def deploy_id_selector(deploy_id: str) -> str:
    """kubectl ``-l`` expression matching everything of one deploy id."""
    return f"{LABEL_DEPLOY_ID}={deploy_id}"
