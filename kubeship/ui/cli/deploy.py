"""
CLI commands for deploying — deploy, cleanup, rollback, render.

Thin wrappers over ``kubeship.core.use_cases``. Exit codes come from the
error taxonomy: 0 healthy, 1 detection/validation, 2 build,
3 apply/rollout, 4 busy.
"""

from __future__ import annotations

import json
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import click

from kubeship.core.use_cases.deploy import DeployOptions, DeployRunResult
from kubeship.ui.cli.common import echo_error, framework_option, mount_option


@contextmanager
def _interruptible() -> Iterator[threading.Event]:
    """Turn the first Ctrl-C into a cancel request; a second one aborts."""
    cancel = threading.Event()

    def _handler(signum, frame):  # type: ignore[no-untyped-def]
        if cancel.is_set():
            raise KeyboardInterrupt
        click.secho("\n⏹️  Cancelling at the next checkpoint (Ctrl-C again to abort)…", fg="yellow", err=True)
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def _emit(result: DeployRunResult, as_json: bool) -> None:
    """Print the result and exit with its code."""
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error is not None:
        echo_error(result.error.to_dict())
        sys.exit(result.exit_code)

    outcome = result.outcome
    assert outcome is not None
    data = outcome.to_dict()

    if outcome.build is not None:
        reused = " (reused)" if outcome.build.reused else ""
        click.echo(f"   🐳 Image: {outcome.build.image.reference}{reused}")
    if outcome.applied is not None:
        for res in outcome.applied.resources:
            click.echo(f"   ☸️  {res.kind}/{res.name} {res.action}")
    if outcome.status is not None:
        s = outcome.status
        click.echo(f"   📊 Rollout: {s.ready_replicas}/{s.desired_replicas} ready — {s.message}")
    if outcome.pod_phases:
        click.echo(f"   🟢 Pods: {', '.join(outcome.pod_phases)}")
    if outcome.rolled_back:
        click.secho("   ↩️  Rolled back to the previous image", fg="yellow")
    for name in outcome.deleted:
        click.echo(f"   🧹 Deleted {name}")
    for err in outcome.cleanup_errors:
        click.secho(f"   ⚠️  {err}", fg="yellow")

    if outcome.error is not None:
        echo_error(outcome.error.to_dict())
    else:
        click.secho(f"✅ {outcome.operation} {data['state']}", fg="green", bold=True)
    sys.exit(result.exit_code)


# ── deploy ──────────────────────────────────────────────────────


@click.command()
@click.option("--prod", is_flag=True, help="Production build (multi-stage, prod resources).")
@click.option("--port", type=click.IntRange(1, 65535), default=None, help="Container port.")
@click.option("--rpl", is_flag=True, help="Enable autoscaling between the replica bounds.")
@click.option("--cleanup", is_flag=True, help="Delete previous resources first; clean up on failure.")
@click.option("--rollback", "rollback_on_failure", is_flag=True, help="Roll back to the prior image on failure.")
@framework_option
@click.option("--namespace", "-n", default=None, help="Target namespace.")
@click.option("--timeout", type=click.FloatRange(min=1), default=None, help="Rollout timeout in seconds.")
@click.option(
    "--package-manager", "package_manager",
    type=click.Choice(["npm", "yarn", "bun"]), default=None,
    help="Package manager when the project has no lockfile.",
)
@mount_option
@click.option("--mock", is_flag=True, help="Use in-memory backends (no docker, no cluster).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def deploy(
    ctx: click.Context,
    prod: bool,
    port: int | None,
    rpl: bool,
    cleanup: bool,
    rollback_on_failure: bool,
    framework: str | None,
    namespace: str | None,
    timeout: float | None,
    package_manager: str | None,
    source_mount: bool | None,
    mock: bool,
    as_json: bool,
) -> None:
    """Build the image, apply manifests, and wait for a healthy rollout."""
    from kubeship.core.use_cases.deploy import run_deploy

    options = DeployOptions(
        prod=prod, port=port, rpl=rpl, cleanup=cleanup, rollback=rollback_on_failure,
        framework=framework, namespace=namespace, timeout=timeout,
        package_manager=package_manager, source_mount=source_mount, mock=mock,
    )
    project_root = ctx.obj["project_root"]

    if not as_json and not ctx.obj.get("quiet"):
        mode = "prod" if prod else "dev"
        click.secho(f"🚀 Deploying {project_root.name} ({mode}{', mock' if mock else ''})", fg="cyan", bold=True)

    with _interruptible() as cancel:
        result = run_deploy(project_root, options, cancel=cancel)
    _emit(result, as_json)


# ── cleanup ─────────────────────────────────────────────────────


@click.command()
@framework_option
@click.option("--namespace", "-n", default=None, help="Target namespace.")
@click.option("--mock", is_flag=True, help="Use in-memory backends.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def cleanup(
    ctx: click.Context,
    framework: str | None,
    namespace: str | None,
    mock: bool,
    as_json: bool,
) -> None:
    """Delete every resource this project's deployment created."""
    from kubeship.core.use_cases.deploy import run_cleanup

    options = DeployOptions(framework=framework, namespace=namespace, mock=mock)
    _emit(run_cleanup(ctx.obj["project_root"], options), as_json)


# ── rollback ────────────────────────────────────────────────────


@click.command()
@framework_option
@click.option("--namespace", "-n", default=None, help="Target namespace.")
@click.option("--timeout", type=click.FloatRange(min=1), default=None, help="Rollout timeout in seconds.")
@click.option("--mock", is_flag=True, help="Use in-memory backends.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def rollback(
    ctx: click.Context,
    framework: str | None,
    namespace: str | None,
    timeout: float | None,
    mock: bool,
    as_json: bool,
) -> None:
    """Revert the deployment to its previous image."""
    from kubeship.core.use_cases.deploy import run_rollback

    options = DeployOptions(framework=framework, namespace=namespace, timeout=timeout, mock=mock)
    with _interruptible() as cancel:
        result = run_rollback(ctx.obj["project_root"], options, cancel=cancel)
    _emit(result, as_json)


# ── render ──────────────────────────────────────────────────────


@click.command()
@click.option("--prod", is_flag=True, help="Render the production recipe and resources.")
@click.option("--port", type=click.IntRange(1, 65535), default=None, help="Container port.")
@click.option("--rpl", is_flag=True, help="Include the HorizontalPodAutoscaler.")
@framework_option
@click.option("--namespace", "-n", default=None, help="Target namespace.")
@mount_option
@click.option("--out", "out_dir", default="k8s", show_default=True, help="Manifest directory.")
@click.option("--force", is_flag=True, help="Overwrite existing files.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def render(
    ctx: click.Context,
    prod: bool,
    port: int | None,
    rpl: bool,
    framework: str | None,
    namespace: str | None,
    source_mount: bool | None,
    out_dir: str,
    force: bool,
    as_json: bool,
) -> None:
    """Write the Dockerfile and manifests without deploying."""
    from kubeship.core.use_cases.scaffold import run_render

    options = DeployOptions(
        prod=prod, port=port, rpl=rpl, framework=framework, namespace=namespace,
        source_mount=source_mount,
    )
    result = run_render(ctx.obj["project_root"], options, out_dir=out_dir, force=force)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        echo_error(result.error.to_dict())
        sys.exit(result.exit_code)

    click.secho(f"📄 Rendered for image {result.image}", fg="cyan", bold=True)
    for path in result.written:
        click.echo(f"   📝 {path}")
    for path in result.skipped:
        click.secho(f"   ⏭️  {path} (exists, use --force)", fg="yellow")
