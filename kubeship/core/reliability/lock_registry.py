"""
Lock registry — per-deploy-id mutual exclusion with fail-fast acquire.

One registry lives for the lifetime of the process and is handed to the
LifecycleManager at construction. Acquisition never blocks: a caller
that finds the id held gets ``False`` (the manager turns that into
DeployBusy) and must retry on its own.

    registry = LockRegistry()
    lock = registry.try_acquire("3f9a0c1b2d4e", owner="deploy")
    if lock is None:
        ...  # busy
    try:
        ...
    finally:
        registry.release(lock)
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LifecycleLock:
    """Token proving ownership of one deploy id."""

    deploy_id: str
    owner: str = ""
    token: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    acquired_at: float = field(default_factory=time.monotonic)


@dataclass
class LockRegistry:
    """Table of held locks keyed by deploy id."""

    _held: dict[str, LifecycleLock] = field(default_factory=dict)
    _mutex: threading.Lock = field(default_factory=threading.Lock)

    def try_acquire(self, deploy_id: str, owner: str = "") -> LifecycleLock | None:
        """Atomically take the lock for ``deploy_id``, or return None if held."""
        with self._mutex:
            if deploy_id in self._held:
                logger.info(
                    "Lock %s busy (held by %s)", deploy_id, self._held[deploy_id].owner,
                )
                return None
            lock = LifecycleLock(deploy_id=deploy_id, owner=owner)
            self._held[deploy_id] = lock
        logger.debug("Lock %s acquired by %s", deploy_id, owner or "?")
        return lock

    def release(self, lock: LifecycleLock) -> bool:
        """Release ``lock``. A stale token (not the current holder) is ignored."""
        with self._mutex:
            current = self._held.get(lock.deploy_id)
            if current is None or current.token != lock.token:
                logger.warning("Release of stale lock %s ignored", lock.deploy_id)
                return False
            del self._held[lock.deploy_id]
        logger.debug("Lock %s released", lock.deploy_id)
        return True

    def holder(self, deploy_id: str) -> LifecycleLock | None:
        with self._mutex:
            return self._held.get(deploy_id)

    def is_held(self, deploy_id: str) -> bool:
        return self.holder(deploy_id) is not None

    def get_status(self) -> dict[str, dict[str, Any]]:
        """Snapshot of all held locks."""
        now = time.monotonic()
        with self._mutex:
            return {
                did: {"owner": lock.owner, "held_for_s": round(now - lock.acquired_at, 3)}
                for did, lock in self._held.items()
            }
