"""
Receipt model — the result contract between services and backends.

Backends (docker, kubectl, mocks) never raise for tool failures; they
return a Receipt and the calling service decides which error, if any,
the failure becomes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Outcome of one backend operation.

    ``metadata`` carries structured payloads, e.g. the parsed object of
    a ``kubectl get`` under ``"object"`` or ``not_found=True`` when the
    resource does not exist.
    """

    backend: str
    operation: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def not_found(self) -> bool:
        return bool(self.metadata.get("not_found"))

    @classmethod
    def success(
        cls,
        backend: str,
        operation: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(backend=backend, operation=operation, status="ok", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        backend: str,
        operation: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(backend=backend, operation=operation, status="failed", error=error, **kwargs)

    @classmethod
    def skip(
        cls,
        backend: str,
        operation: str,
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(backend=backend, operation=operation, status="skipped", output=reason, **kwargs)
