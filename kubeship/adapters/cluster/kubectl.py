"""
kubectl adapter — cluster reads and writes through the kubectl CLI.

Uses the current kubeconfig context; never talks to the API server
directly. Documents are applied from stdin (``kubectl apply -f -``) so
nothing is written to the project tree.
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from typing import Any

import yaml

from kubeship.adapters.base import ClusterApi
from kubeship.core.models.receipt import Receipt
from kubeship.core.services.k8s_common import (
    _kubectl_available,
    _run_kubectl,
    is_not_found,
    kubectl_resource,
)

logger = logging.getLogger(__name__)


class KubectlClusterApi(ClusterApi):
    """ClusterApi over the kubectl binary."""

    def __init__(self, timeout: int = 30) -> None:
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "kubectl"

    def is_available(self) -> bool:
        if not _kubectl_available().get("available"):
            return False
        try:
            result = _run_kubectl("cluster-info", timeout=10)
        except (FileNotFoundError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    # ── Operations ──────────────────────────────────────────────

    def ensure_namespace(self, namespace: str) -> Receipt:
        got = self._call("ensure_namespace", "get", "namespace", namespace, "-o", "name")
        if got.ok:
            return Receipt.success(self.name, "ensure_namespace", output=namespace)
        if not got.not_found:
            return got
        created = self._call("ensure_namespace", "create", "namespace", namespace)
        if created.ok:
            created.metadata["created"] = True
        return created

    def get(self, kind: str, name: str, namespace: str) -> Receipt:
        receipt = self._call(
            "get", "get", kubectl_resource(kind), name, "-n", namespace, "-o", "json",
        )
        if receipt.ok:
            receipt.metadata["object"] = _parse_json(receipt.output)
        return receipt

    def list(self, kind: str, namespace: str, selector: str) -> Receipt:
        receipt = self._call(
            "list", "get", kubectl_resource(kind), "-n", namespace,
            "-l", selector, "-o", "json",
        )
        if receipt.ok:
            receipt.metadata["items"] = _parse_json(receipt.output).get("items", [])
        return receipt

    def apply(self, document: dict[str, Any]) -> Receipt:
        receipt = self._call(
            "apply", "apply", "-f", "-", "-o", "json",
            stdin=yaml.safe_dump(document, sort_keys=False),
        )
        if receipt.ok:
            receipt.metadata["object"] = _parse_json(receipt.output)
        return receipt

    def delete(self, kind: str, name: str, namespace: str) -> Receipt:
        return self._call(
            "delete", "delete", kubectl_resource(kind), name, "-n", namespace,
            "--wait=false",
        )

    # ── Helpers ─────────────────────────────────────────────────

    def _call(self, operation: str, *args: str, stdin: str | None = None) -> Receipt:
        """Run kubectl and fold every outcome into a Receipt."""
        start = time.monotonic()
        try:
            result = _run_kubectl(*args, timeout=self._timeout, input=stdin)
        except FileNotFoundError:
            return Receipt.failure(self.name, operation, error="kubectl not found on PATH")
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                self.name, operation, error=f"kubectl timed out after {self._timeout}s",
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if result.returncode == 0:
            return Receipt.success(
                self.name, operation, output=result.stdout, duration_ms=elapsed_ms,
            )

        stderr = result.stderr.strip() or f"kubectl {args[0]} exited {result.returncode}"
        metadata = {"not_found": True} if is_not_found(stderr) else {}
        logger.debug("kubectl %s failed: %s", operation, stderr)
        return Receipt.failure(
            self.name, operation, error=stderr, duration_ms=elapsed_ms, metadata=metadata,
        )


def _parse_json(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
