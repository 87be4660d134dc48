"""
Adapter base — the contracts between the orchestrator and external tools.

Two seams: a BuildBackend turns a recipe and a build context into a
tagged image, a ClusterApi reads and writes Kubernetes objects. Services
only talk to these interfaces, never directly to docker or kubectl, so
every stage can run against the in-memory doubles in ``mock.py``.

Adapters NEVER raise for tool failures — the failure is captured in the
returned Receipt and the calling service maps it to a stage error.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from kubeship.core.models.receipt import Receipt


class BuildBackend(ABC):
    """Container image builder (docker CLI, or a test double).

    Receipt metadata conventions:
        image_exists  -> ``exists`` (bool), ``digest`` (str | None)
        build         -> ``digest`` (str | None), ``cancelled`` (bool)
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier (e.g. 'docker', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Fast check that the underlying tool can be reached. Never raises."""

    @abstractmethod
    def image_exists(self, reference: str) -> Receipt:
        """Whether ``reference`` (repo:tag) is already present."""

    @abstractmethod
    def build(
        self,
        reference: str,
        recipe: str,
        context_dir: Path,
        cancel: threading.Event | None = None,
    ) -> Receipt:
        """Build ``recipe`` against ``context_dir`` and tag it ``reference``.

        Must stop promptly and report ``cancelled=True`` once ``cancel``
        is set.
        """

    @abstractmethod
    def push(self, reference: str) -> Receipt:
        """Push ``reference`` to its registry."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class ClusterApi(ABC):
    """Kubernetes object store (kubectl CLI, or a test double).

    Receipt metadata conventions:
        get / apply   -> ``object`` (dict)
        list          -> ``items`` (list[dict])
        get / delete  -> ``not_found=True`` when the object is absent
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier (e.g. 'kubectl', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Fast check that the cluster can be reached. Never raises."""

    @abstractmethod
    def ensure_namespace(self, namespace: str) -> Receipt:
        """Create ``namespace`` if it does not exist."""

    @abstractmethod
    def get(self, kind: str, name: str, namespace: str) -> Receipt:
        """Fetch one object."""

    @abstractmethod
    def list(self, kind: str, namespace: str, selector: str) -> Receipt:
        """List objects of ``kind`` matching a label ``selector``."""

    @abstractmethod
    def apply(self, document: dict[str, Any]) -> Receipt:
        """Create or update ``document`` (idempotent)."""

    @abstractmethod
    def delete(self, kind: str, name: str, namespace: str) -> Receipt:
        """Delete one object."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
