"""
Shared CLI helpers — options and output used by several commands.
"""

from __future__ import annotations

import click

from kubeship.core.models.project import FrameworkKind


def framework_option(func):  # type: ignore[no-untyped-def]
    """``--type`` option accepting every deployable FrameworkKind."""
    return click.option(
        "--type",
        "framework",
        type=click.Choice([*FrameworkKind.choices(), "bun"], case_sensitive=False),
        default=None,
        help="Skip detection and force a framework.",
    )(func)


def echo_error(error: dict) -> None:
    """Print a structured failure: reason, stage, message."""
    stage = f" at {error['stage']}" if error.get("stage") else ""
    click.secho(f"❌ {error['reason']}{stage}: {error['message']}", fg="red")


def mount_option(func):  # type: ignore[no-untyped-def]
    """``--mount/--no-mount``: live project tree in dev pods (None = config)."""
    return click.option(
        "--mount/--no-mount",
        "source_mount",
        default=None,
        help="Mount the project directory into dev pods (hostPath; local clusters).",
    )(func)
