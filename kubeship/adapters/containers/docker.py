"""
Docker adapter — image builds through the docker CLI.

The recipe is piped to ``docker build -f -`` so no Dockerfile has to
exist in the project. Builds run under Popen so a cancel request can
terminate the build process between output lines.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
import time
from collections import deque
from pathlib import Path

from kubeship.adapters.base import BuildBackend
from kubeship.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 40
_CANCEL_POLL_S = 0.25


def run_docker(
    *args: str,
    timeout: int = 60,
) -> subprocess.CompletedProcess[str]:
    """Run a docker command and return the result."""
    return subprocess.run(
        ["docker", *args],
        capture_output=True,
        text=True,
        timeout=timeout,
    )


class DockerBuildBackend(BuildBackend):
    """BuildBackend over the docker binary."""

    def __init__(self, build_timeout: int | None = None) -> None:
        self._build_timeout = build_timeout

    @property
    def name(self) -> str:
        return "docker"

    def is_available(self) -> bool:
        if shutil.which("docker") is None:
            return False
        try:
            return run_docker("version", "--format", "{{.Server.Version}}", timeout=10).returncode == 0
        except subprocess.TimeoutExpired:
            return False

    # ── Operations ──────────────────────────────────────────────

    def image_exists(self, reference: str) -> Receipt:
        try:
            result = run_docker("image", "inspect", reference, "--format", "{{.Id}}")
        except FileNotFoundError:
            return Receipt.failure(self.name, "image_exists", error="docker not found on PATH")
        except subprocess.TimeoutExpired:
            return Receipt.failure(self.name, "image_exists", error="docker image inspect timed out")

        if result.returncode == 0:
            return Receipt.success(
                self.name, "image_exists",
                metadata={"exists": True, "digest": result.stdout.strip() or None},
            )
        if "No such image" in result.stderr or "not found" in result.stderr.lower():
            return Receipt.success(self.name, "image_exists", metadata={"exists": False})
        return Receipt.failure(self.name, "image_exists", error=result.stderr.strip())

    def build(
        self,
        reference: str,
        recipe: str,
        context_dir: Path,
        cancel: threading.Event | None = None,
    ) -> Receipt:
        cmd = ["docker", "build", "-t", reference, "-f", "-", str(context_dir)]
        logger.debug("Running: %s", " ".join(cmd))
        start = time.monotonic()

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError:
            return Receipt.failure(self.name, "build", error="docker not found on PATH")

        tail: deque[str] = deque(maxlen=_OUTPUT_TAIL)
        reader = threading.Thread(target=_drain, args=(proc, tail), daemon=True)
        reader.start()

        assert proc.stdin is not None
        try:
            proc.stdin.write(recipe)
            proc.stdin.close()
        except BrokenPipeError:
            logger.debug("docker build closed stdin early")

        cancelled = timed_out = False
        deadline = start + self._build_timeout if self._build_timeout else None
        while proc.poll() is None:
            if cancel is not None and cancel.wait(_CANCEL_POLL_S):
                cancelled = True
            elif cancel is None:
                time.sleep(_CANCEL_POLL_S)
            if deadline is not None and time.monotonic() > deadline:
                timed_out = True
            if cancelled or timed_out:
                proc.terminate()
                try:
                    proc.wait(timeout=10)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.wait()
                break

        reader.join(timeout=5)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = "\n".join(tail)

        if cancelled:
            return Receipt.failure(
                self.name, "build", error="build cancelled",
                output=output, duration_ms=elapsed_ms, metadata={"cancelled": True},
            )
        if timed_out:
            return Receipt.failure(
                self.name, "build", error=f"build timed out after {self._build_timeout}s",
                output=output, duration_ms=elapsed_ms,
            )
        if proc.returncode != 0:
            last = tail[-1] if tail else f"exit code {proc.returncode}"
            return Receipt.failure(
                self.name, "build", error=last, output=output, duration_ms=elapsed_ms,
            )

        inspect = self.image_exists(reference)
        return Receipt.success(
            self.name, "build", output=output, duration_ms=elapsed_ms,
            metadata={"digest": inspect.metadata.get("digest")},
        )

    def push(self, reference: str) -> Receipt:
        try:
            result = run_docker("push", reference, timeout=600)
        except FileNotFoundError:
            return Receipt.failure(self.name, "push", error="docker not found on PATH")
        except subprocess.TimeoutExpired:
            return Receipt.failure(self.name, "push", error="docker push timed out")
        if result.returncode != 0:
            return Receipt.failure(self.name, "push", error=result.stderr.strip())
        return Receipt.success(self.name, "push", output=result.stdout.strip())


def _drain(proc: subprocess.Popen[str], tail: deque[str]) -> None:
    """Keep the last lines of build output; prevents the pipe from filling."""
    assert proc.stdout is not None
    for line in proc.stdout:
        line = line.rstrip()
        if line:
            tail.append(line)
            logger.debug("[docker] %s", line)
