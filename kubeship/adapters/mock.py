"""
Mock adapters — in-memory doubles for the build backend and the cluster.

Used by ``kubeship deploy --mock`` and throughout the tests. Both keep a
``call_log`` so callers can assert which external operations happened
(or did not happen) during a run.
"""

from __future__ import annotations

import copy
import hashlib
import threading
from pathlib import Path
from typing import Any, Literal

from kubeship.adapters.base import BuildBackend, ClusterApi
from kubeship.core.models.receipt import Receipt

RolloutBehaviour = Literal["healthy", "stuck", "failed"]


class MockBuildBackend(BuildBackend):
    """Build backend that records builds into an in-memory image set.

    Args:
        images:      References that already "exist".
        fail_build:  Make every build fail with this error.
        block_until: Event the build waits on before finishing; lets tests
                     hold a build open while they poke at the lock.
    """

    def __init__(
        self,
        images: set[str] | None = None,
        available: bool = True,
        fail_build: str | None = None,
        fail_push: str | None = None,
        block_until: threading.Event | None = None,
    ) -> None:
        self.images: set[str] = set(images or ())
        self._available = available
        self.fail_build = fail_build
        self.fail_push = fail_push
        self._block_until = block_until
        self._call_log: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def call_log(self) -> list[tuple[str, str]]:
        """(operation, reference) for every call received."""
        return self._call_log

    @property
    def builds(self) -> int:
        return sum(1 for op, _ in self._call_log if op == "build")

    def is_available(self) -> bool:
        return self._available

    def image_exists(self, reference: str) -> Receipt:
        self._call_log.append(("image_exists", reference))
        exists = reference in self.images
        return Receipt.success(
            self.name, "image_exists",
            metadata={"exists": exists, "digest": _digest(reference) if exists else None},
        )

    def build(
        self,
        reference: str,
        recipe: str,
        context_dir: Path,
        cancel: threading.Event | None = None,
    ) -> Receipt:
        self._call_log.append(("build", reference))

        if self._block_until is not None:
            while not self._block_until.wait(0.01):
                if cancel is not None and cancel.is_set():
                    break
        if cancel is not None and cancel.is_set():
            return Receipt.failure(
                self.name, "build", error="build cancelled", metadata={"cancelled": True},
            )
        if self.fail_build:
            return Receipt.failure(self.name, "build", error=self.fail_build)

        self.images.add(reference)
        return Receipt.success(
            self.name, "build", output=f"[mock] built {reference}",
            metadata={"digest": _digest(reference)},
        )

    def push(self, reference: str) -> Receipt:
        self._call_log.append(("push", reference))
        if self.fail_push:
            return Receipt.failure(self.name, "push", error=self.fail_push)
        return Receipt.success(self.name, "push", output=f"[mock] pushed {reference}")


class MockClusterApi(ClusterApi):
    """In-memory object store with a scripted rollout behaviour.

    Deployments report status on every ``get``:
        healthy — one more replica ready per read after ``ready_after``;
                  a template change keeps one old pod (surge) until all
                  new replicas are ready
        stuck   — never ready (drives the rollout timeout)
        failed  — ProgressDeadlineExceeded after ``ready_after`` reads

    A Deployment applied without ``replicas`` keeps its live count; an
    applied HPA scales its target up to ``minReplicas``.
    """

    def __init__(
        self,
        rollout: RolloutBehaviour = "healthy",
        ready_after: int = 0,
        available: bool = True,
        fail_apply: set[str] | None = None,
        fail_delete: set[str] | None = None,
    ) -> None:
        self.rollout = rollout
        self.ready_after = ready_after
        self._available = available
        self.fail_apply: set[str] = set(fail_apply or ())
        self.fail_delete: set[str] = set(fail_delete or ())
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.namespaces: set[str] = {"default"}
        self._reads: dict[tuple[str, str, str], int] = {}
        self._rolling: dict[tuple[str, str, str], bool] = {}
        self._call_log: list[tuple[str, str, str]] = []
        self._mutex = threading.Lock()

    @property
    def name(self) -> str:
        return "mock"

    @property
    def call_log(self) -> list[tuple[str, str, str]]:
        """(operation, kind, name) for every call received."""
        return self._call_log

    def operations(self, op: str) -> list[tuple[str, str]]:
        """(kind, name) of every logged call of type ``op``."""
        return [(k, n) for o, k, n in self._call_log if o == op]

    def is_available(self) -> bool:
        return self._available

    # ── Operations ──────────────────────────────────────────────

    def ensure_namespace(self, namespace: str) -> Receipt:
        with self._mutex:
            self._call_log.append(("ensure_namespace", "Namespace", namespace))
            created = namespace not in self.namespaces
            self.namespaces.add(namespace)
        return Receipt.success(self.name, "ensure_namespace", metadata={"created": created})

    def get(self, kind: str, name: str, namespace: str) -> Receipt:
        key = (kind, namespace, name)
        with self._mutex:
            self._call_log.append(("get", kind, name))
            obj = self.objects.get(key)
            if obj is None:
                return Receipt.failure(
                    self.name, "get", error=f'{kind.lower()} "{name}" not found',
                    metadata={"not_found": True},
                )
            if kind == "Deployment":
                self._reads[key] = self._reads.get(key, 0) + 1
                obj["status"] = self._status(key, obj, self._reads[key])
            return Receipt.success(self.name, "get", metadata={"object": copy.deepcopy(obj)})

    def list(self, kind: str, namespace: str, selector: str) -> Receipt:
        wanted = _parse_selector(selector)
        with self._mutex:
            self._call_log.append(("list", kind, selector))
            if kind == "Pod":
                return Receipt.success(
                    self.name, "list", metadata={"items": self._pods(namespace, wanted)},
                )
            items = [
                copy.deepcopy(obj)
                for (k, ns, _), obj in sorted(self.objects.items())
                if k == kind and ns == namespace
                and wanted.items() <= obj.get("metadata", {}).get("labels", {}).items()
            ]
        return Receipt.success(self.name, "list", metadata={"items": items})

    def apply(self, document: dict[str, Any]) -> Receipt:
        kind = document["kind"]
        meta = document["metadata"]
        key = (kind, meta.get("namespace", "default"), meta["name"])
        with self._mutex:
            self._call_log.append(("apply", kind, meta["name"]))
            if kind in self.fail_apply:
                return Receipt.failure(self.name, "apply", error=f"[mock] apply {kind} rejected")
            previous = self.objects.get(key)
            obj = copy.deepcopy(document)
            generation = (previous or {}).get("metadata", {}).get("generation", 0) + 1
            if kind == "Deployment":
                self._place_deployment(key, obj, previous)
            obj["metadata"]["generation"] = generation
            self.objects[key] = obj
            self._reads.pop(key, None)
            if kind == "HorizontalPodAutoscaler":
                self._scale_target(obj, key[1])
        return Receipt.success(self.name, "apply", metadata={"object": copy.deepcopy(obj)})

    def delete(self, kind: str, name: str, namespace: str) -> Receipt:
        key = (kind, namespace, name)
        with self._mutex:
            self._call_log.append(("delete", kind, name))
            if kind in self.fail_delete:
                return Receipt.failure(self.name, "delete", error=f"[mock] delete {kind} rejected")
            if self.objects.pop(key, None) is None:
                return Receipt.failure(
                    self.name, "delete", error=f'{kind.lower()} "{name}" not found',
                    metadata={"not_found": True},
                )
        return Receipt.success(self.name, "delete", output=f"{kind.lower()} {name} deleted")

    # ── Helpers ─────────────────────────────────────────────────

    def _place_deployment(
        self,
        key: tuple[str, str, str],
        obj: dict[str, Any],
        previous: dict[str, Any] | None,
    ) -> None:
        # The API server keeps the live replica count when none is given
        spec = obj.setdefault("spec", {})
        if "replicas" not in spec:
            spec["replicas"] = (previous or {}).get("spec", {}).get("replicas", 1)
        old_template = (previous or {}).get("spec", {}).get("template")
        self._rolling[key] = previous is not None and old_template != spec.get("template")

    def _scale_target(self, hpa: dict[str, Any], namespace: str) -> None:
        """The autoscaler lifts its target to ``minReplicas`` right away."""
        key = ("Deployment", namespace, hpa["spec"]["scaleTargetRef"]["name"])
        deployment = self.objects.get(key)
        minimum = hpa["spec"].get("minReplicas", 1)
        if deployment is None or deployment["spec"].get("replicas", 1) >= minimum:
            return
        deployment["spec"]["replicas"] = minimum
        deployment["metadata"]["generation"] += 1

    def _status(self, key: tuple[str, str, str], obj: dict[str, Any], reads: int) -> dict[str, Any]:
        """One observation of a rollout that advances a replica per read.

        After ``ready_after`` reads, each further read brings one more new
        replica to ready. During an update one old replica keeps running
        until the read after the last new one is ready, the way a
        RollingUpdate with surge leaves it.
        """
        desired = obj["spec"].get("replicas", 1)
        generation = obj["metadata"]["generation"]
        progress = max(reads - self.ready_after, 0)
        rolling = self._rolling.get(key, False)

        if self.rollout == "healthy":
            ready = min(progress, desired)
            old = 1 if rolling and progress <= desired else 0
        else:
            ready = 0
            old = 1 if rolling else 0

        status: dict[str, Any] = {
            "observedGeneration": generation,
            "replicas": desired + old,
            "updatedReplicas": desired,
            "readyReplicas": ready,
            "availableReplicas": ready,
        }
        if ready < desired:
            status["unavailableReplicas"] = desired - ready
        if self.rollout == "failed" and progress > 0:
            status["conditions"] = [{
                "type": "Progressing",
                "status": "False",
                "reason": "ProgressDeadlineExceeded",
                "message": "[mock] pods never became ready",
            }]
        return status

    def _pods(self, namespace: str, wanted: dict[str, str]) -> list[dict[str, Any]]:
        """Pods implied by each matching Deployment's last observed status."""
        pods: list[dict[str, Any]] = []
        for (kind, ns, name), obj in sorted(self.objects.items()):
            labels = obj.get("spec", {}).get("template", {}).get("metadata", {}).get("labels", {})
            if kind != "Deployment" or ns != namespace or not wanted.items() <= labels.items():
                continue
            status = obj.get("status") or {}
            total = status.get("replicas", obj["spec"].get("replicas", 1))
            old = total - status.get("updatedReplicas", total)
            running = status.get("readyReplicas", 0) + old
            for i in range(total):
                pods.append({
                    "kind": "Pod",
                    "metadata": {"name": f"{name}-{i}", "namespace": ns, "labels": dict(labels)},
                    "status": {"phase": "Running" if i < running else "Pending"},
                })
        return pods


def _parse_selector(selector: str) -> dict[str, str]:
    pairs = (part.split("=", 1) for part in selector.split(",") if "=" in part)
    return {k.strip(): v.strip() for k, v in pairs}


def _digest(reference: str) -> str:
    return "sha256:" + hashlib.sha256(reference.encode()).hexdigest()
