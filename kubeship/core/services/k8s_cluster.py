"""K8s cluster operations — apply, watch, roll back, and delete.

The ClusterController drives a ClusterApi (kubectl or the in-memory
mock). It owns no state of its own: the prior image used by rollback is
kept in the Deployment's ``kubeship.io/previous-image`` annotation, so
the cluster stays the source of truth.

Watching is a cooperative poll/sleep/check loop. The clock and the wait
function are injectable so tests can drive a rollout without sleeping.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Callable

from kubeship.adapters.base import ClusterApi
from kubeship.core.errors import ClusterApplyError, NoPriorRevision
from kubeship.core.models.manifest import (
    AppliedResource,
    AppliedSet,
    ManifestSet,
    RolloutPhase,
    RolloutStatus,
)
from kubeship.core.services.k8s_common import APPLY_ORDER
from kubeship.core.services.naming import ANNOTATION_PREVIOUS_IMAGE, deploy_id_selector

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_ROLLOUT_TIMEOUT = 120.0

_FAILURE_REASONS = frozenset({"ProgressDeadlineExceeded"})


# ═══════════════════════════════════════════════════════════════════
#  Status evaluation
# ═══════════════════════════════════════════════════════════════════


def _container_image(deployment: dict[str, Any]) -> str:
    containers = (
        deployment.get("spec", {}).get("template", {}).get("spec", {}).get("containers") or []
    )
    return containers[0].get("image", "") if containers else ""


def _set_container_image(deployment: dict[str, Any], image: str) -> None:
    deployment["spec"]["template"]["spec"]["containers"][0]["image"] = image


def _annotations(obj: dict[str, Any]) -> dict[str, str]:
    return obj.get("metadata", {}).get("annotations") or {}


def evaluate_rollout(deployment: dict[str, Any]) -> RolloutStatus:
    """Classify one observation of a Deployment.

    Healthy once the controller has observed the latest generation, every
    desired replica is updated and ready, no old replica is left
    terminating, and every updated replica is available (the same test
    ``kubectl rollout status`` applies). Failed on a terminal condition
    (ProgressDeadlineExceeded, ReplicaFailure).
    """
    desired = int(deployment.get("spec", {}).get("replicas", 1))
    status = deployment.get("status") or {}
    ready = int(status.get("readyReplicas", 0))
    updated = int(status.get("updatedReplicas", 0))
    total = int(status.get("replicas", updated))
    available = int(status.get("availableReplicas", ready))
    unavailable = int(status.get("unavailableReplicas", max(desired - ready, 0)))

    base = {
        "desired_replicas": desired,
        "ready_replicas": ready,
        "unavailable_replicas": unavailable,
    }

    for cond in status.get("conditions") or []:
        if cond.get("type") == "Progressing" and cond.get("reason") in _FAILURE_REASONS:
            return RolloutStatus(
                **base, phase=RolloutPhase.FAILED,
                message=cond.get("message") or cond["reason"],
            )
        if cond.get("type") == "ReplicaFailure" and cond.get("status") == "True":
            return RolloutStatus(
                **base, phase=RolloutPhase.FAILED,
                message=cond.get("message") or "ReplicaFailure",
            )

    generation = deployment.get("metadata", {}).get("generation", 0)
    observed = status.get("observedGeneration", 0)
    if observed < generation:
        message = "waiting for the controller to observe the update"
    elif updated < desired or ready < desired:
        message = f"{ready}/{desired} replicas ready"
    elif total > updated:
        message = f"{total - updated} old replicas pending termination"
    elif available < updated:
        message = f"{available}/{updated} updated replicas available"
    else:
        return RolloutStatus(**base, phase=RolloutPhase.HEALTHY, message="all replicas ready")

    return RolloutStatus(**base, phase=RolloutPhase.PROGRESSING, message=message)


# ═══════════════════════════════════════════════════════════════════
#  Controller
# ═══════════════════════════════════════════════════════════════════


class ClusterController:
    """Cluster-side half of a deployment."""

    def __init__(
        self,
        api: ClusterApi,
        interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        wait: Callable[[float], None] | None = None,
    ) -> None:
        self._api = api
        self._interval = interval
        self._clock = clock
        self._wait = wait

    @property
    def api(self) -> ClusterApi:
        return self._api

    def ensure_available(self, stage: str = "apply") -> None:
        """Raises ClusterApplyError if the cluster cannot be reached."""
        if not self._api.is_available():
            raise ClusterApplyError(
                f"cluster backend '{self._api.name}' is not available", stage=stage,
            )

    # ── apply ───────────────────────────────────────────────────

    def apply(self, manifests: ManifestSet) -> AppliedSet:
        """Create or update every document, in order.

        Raises:
            ClusterApplyError: Namespace or resource write failed.
        """
        self.ensure_available("apply")

        ns = self._api.ensure_namespace(manifests.namespace)
        if ns.failed:
            raise ClusterApplyError(f"namespace {manifests.namespace}: {ns.error}")

        resources: list[AppliedResource] = []
        for source in manifests.documents:
            doc = copy.deepcopy(source)
            kind = doc["kind"]
            name = doc["metadata"]["name"]

            existing = self._api.get(kind, name, manifests.namespace)
            if existing.failed and not existing.not_found:
                raise ClusterApplyError(f"lookup {kind}/{name}: {existing.error}")
            current = existing.metadata.get("object") if existing.ok else None

            if kind == "Deployment" and current:
                _carry_previous_image(doc, current)

            receipt = self._api.apply(doc)
            if receipt.failed:
                raise ClusterApplyError(f"{kind}/{name}: {receipt.error}")

            action = "configured" if current else "created"
            resources.append(AppliedResource(kind=kind, name=name, action=action))
            logger.info("%s/%s %s", kind, name, action)

        return AppliedSet(
            deploy_id=manifests.deploy_id,
            namespace=manifests.namespace,
            workload_name=manifests.name,
            image=_container_image(manifests.workload),
            resources=resources,
        )

    # ── watch ───────────────────────────────────────────────────

    def watch_rollout(
        self,
        applied: AppliedSet,
        timeout: float = DEFAULT_ROLLOUT_TIMEOUT,
        cancel: threading.Event | None = None,
    ) -> RolloutStatus:
        """Poll the workload until Healthy, Failed, or the deadline.

        Cancellation returns Failed and leaves applied resources alone.
        """
        deadline = self._clock() + timeout
        last = RolloutStatus()
        polls = 0

        while True:
            if cancel is not None and cancel.is_set():
                return last.model_copy(update={
                    "phase": RolloutPhase.FAILED, "message": "cancelled", "polls": polls,
                })

            receipt = self._api.get("Deployment", applied.workload_name, applied.namespace)
            polls += 1
            if receipt.ok:
                last = evaluate_rollout(receipt.metadata.get("object") or {})
                logger.debug("Rollout %s: %s", applied.workload_name, last.message)
                if last.phase.terminal:
                    return last.model_copy(update={"polls": polls})
            elif receipt.not_found:
                return last.model_copy(update={
                    "phase": RolloutPhase.FAILED,
                    "message": f"deployment {applied.workload_name} disappeared",
                    "polls": polls,
                })
            else:
                logger.warning("Rollout poll failed (will retry): %s", receipt.error)

            remaining = deadline - self._clock()
            if remaining <= 0:
                return last.model_copy(update={
                    "phase": RolloutPhase.TIMED_OUT,
                    "message": (
                        f"timed out after {timeout:g}s with "
                        f"{last.ready_replicas}/{last.desired_replicas} ready"
                    ),
                    "polls": polls,
                })
            self._sleep(min(self._interval, remaining), cancel)

    def pod_phases(self, deploy_id: str, namespace: str) -> list[str]:
        """``status.phase`` of every pod labelled with ``deploy_id``.

        Informational only: a failed listing is logged and yields ``[]``.
        """
        listed = self._api.list("Pod", namespace, deploy_id_selector(deploy_id))
        if listed.failed:
            logger.warning("Could not list pods of %s: %s", deploy_id, listed.error)
            return []
        return sorted(
            (item.get("status") or {}).get("phase") or "Unknown"
            for item in listed.metadata.get("items") or []
        )

    def _sleep(self, seconds: float, cancel: threading.Event | None) -> None:
        if self._wait is not None:
            self._wait(seconds)
        elif cancel is not None:
            cancel.wait(seconds)
        else:
            time.sleep(seconds)

    # ── rollback ────────────────────────────────────────────────

    def rollback(
        self,
        deploy_id: str,
        namespace: str,
        timeout: float = DEFAULT_ROLLOUT_TIMEOUT,
        cancel: threading.Event | None = None,
    ) -> RolloutStatus:
        """Revert the workload to its recorded prior image and watch it.

        The current image becomes the new prior, so a second rollback
        undoes the first.

        Raises:
            NoPriorRevision: No workload, or no prior image recorded.
            ClusterApplyError: Lookup or write failed.
        """
        self.ensure_available("rollback")

        listed = self._api.list("Deployment", namespace, deploy_id_selector(deploy_id))
        if listed.failed:
            raise ClusterApplyError(f"list deployments: {listed.error}", stage="rollback")
        items = listed.metadata.get("items") or []
        if not items:
            raise NoPriorRevision(f"no deployment for {deploy_id} in namespace {namespace}")

        current = items[0]
        name = current["metadata"]["name"]
        previous = _annotations(current).get(ANNOTATION_PREVIOUS_IMAGE)
        if not previous:
            raise NoPriorRevision(f"deployment {name} has no recorded prior image")

        image = _container_image(current)
        doc = _writable_copy(current)
        _set_container_image(doc, previous)
        doc["metadata"].setdefault("annotations", {})[ANNOTATION_PREVIOUS_IMAGE] = image

        receipt = self._api.apply(doc)
        if receipt.failed:
            raise ClusterApplyError(f"Deployment/{name}: {receipt.error}", stage="rollback")
        logger.info("Rolled back %s: %s -> %s", name, image, previous)

        applied = AppliedSet(
            deploy_id=deploy_id,
            namespace=namespace,
            workload_name=name,
            image=previous,
            resources=[AppliedResource(kind="Deployment", name=name)],
        )
        return self.watch_rollout(applied, timeout=timeout, cancel=cancel)

    # ── delete ──────────────────────────────────────────────────

    def delete(
        self,
        deploy_id: str,
        namespace: str,
        errors: list[str] | None = None,
    ) -> list[str]:
        """Remove every resource labelled with ``deploy_id``, best-effort.

        Walks kinds in reverse apply order. Not-found is skipped; other
        failures are logged, appended to ``errors`` if given, and the
        sweep continues.

        Returns:
            ``Kind/name`` of each resource deleted.
        """
        deleted: list[str] = []
        selector = deploy_id_selector(deploy_id)

        for kind in reversed(APPLY_ORDER):
            listed = self._api.list(kind, namespace, selector)
            if listed.failed:
                msg = f"list {kind}: {listed.error}"
                logger.warning("Cleanup: %s", msg)
                if errors is not None:
                    errors.append(msg)
                continue

            for item in listed.metadata.get("items") or []:
                name = item["metadata"]["name"]
                receipt = self._api.delete(kind, name, namespace)
                if receipt.ok:
                    deleted.append(f"{kind}/{name}")
                    logger.info("Deleted %s/%s", kind, name)
                elif receipt.not_found:
                    logger.debug("Cleanup: %s/%s already gone", kind, name)
                else:
                    msg = f"delete {kind}/{name}: {receipt.error}"
                    logger.warning("Cleanup: %s", msg)
                    if errors is not None:
                        errors.append(msg)

        return deleted


# ═══════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════


def _carry_previous_image(doc: dict[str, Any], current: dict[str, Any]) -> None:
    """Record at most one prior image on the outgoing Deployment."""
    old_image = _container_image(current)
    if old_image and old_image != _container_image(doc):
        previous = old_image
    else:
        previous = _annotations(current).get(ANNOTATION_PREVIOUS_IMAGE)
    if previous:
        doc["metadata"].setdefault("annotations", {})[ANNOTATION_PREVIOUS_IMAGE] = previous


_SERVER_FIELDS = ("uid", "resourceVersion", "generation", "creationTimestamp", "managedFields")


def _writable_copy(obj: dict[str, Any]) -> dict[str, Any]:
    """Object as read from the cluster, minus status and server-set metadata."""
    doc = copy.deepcopy(obj)
    doc.pop("status", None)
    for key in _SERVER_FIELDS:
        doc.get("metadata", {}).pop(key, None)
    doc.get("metadata", {}).get("annotations", {}).pop(
        "kubectl.kubernetes.io/last-applied-configuration", None,
    )
    return doc
