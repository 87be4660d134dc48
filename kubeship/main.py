"""
kubeship — CLI entrypoint.

Usage:
    kubeship --help
    kubeship detect
    kubeship deploy --prod --rpl --port 4000
    python -m kubeship.main status
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from kubeship import __version__
from kubeship.core.observability.logging_config import setup_from_cli
from kubeship.ui.cli.common import echo_error, framework_option


@click.group()
@click.version_option(version=__version__, prog_name="kubeship")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--project",
    "-C",
    "project_dir",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Project directory (default: nearest directory with package.json).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    project_dir: str | None,
) -> None:
    """kubeship — build and deploy web projects to Kubernetes."""
    from kubeship.core.config.loader import find_project_root

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["project_root"] = (
        Path(project_dir).resolve() if project_dir else find_project_root()
    )

    setup_from_cli(debug=debug, verbose=verbose, quiet=quiet)


# ── init ────────────────────────────────────────────────────────


@cli.command()
@framework_option
@click.option("--force", is_flag=True, help="Overwrite existing files.")
@click.pass_context
def init(ctx: click.Context, framework: str | None, force: bool) -> None:
    """Write kubeship.yml and .dockerignore for this project."""
    from kubeship.core.use_cases.scaffold import run_init

    result = run_init(ctx.obj["project_root"], framework=framework, force=force)
    if result.error:
        echo_error(result.error.to_dict())
        sys.exit(result.exit_code)

    assert result.profile is not None
    click.secho(f"✨ Initialized {result.profile.app_name} ({result.profile.framework_kind.value})", fg="green", bold=True)
    for path in result.written:
        click.echo(f"   📝 {path}")
    for path in result.skipped:
        click.secho(f"   ⏭️  {path} (exists, use --force)", fg="yellow")


# ── detect ──────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@framework_option
@click.option("--namespace", "-n", default=None, help="Target namespace.")
@click.pass_context
def detect(ctx: click.Context, as_json: bool, framework: str | None, namespace: str | None) -> None:
    """Detect the project's framework and deploy id."""
    from kubeship.core.use_cases.detect import run_detect

    result = run_detect(ctx.obj["project_root"], framework=framework, namespace=namespace)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.error.exit_code if result.error else 0)

    if result.error:
        echo_error(result.error.to_dict())
        sys.exit(result.error.exit_code)

    profile = result.profile
    assert profile is not None
    click.secho(f"\n🔍 {profile.app_name}", fg="cyan", bold=True)
    click.echo(f"   Framework:       {profile.framework_kind.value}")
    click.echo(f"   Entry point:     {profile.entry_point or '-'}")
    click.echo(f"   Port:            {profile.declared_port or '-'}")
    lock = " (lockfile)" if profile.has_lockfile else ""
    click.echo(f"   Package manager: {profile.package_manager.value}{lock}")
    click.echo(f"   Deploy id:       {result.deploy_id}  ({result.namespace}/{result.resource_name})")
    click.echo()


# ── status ──────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the last recorded operation per deployment."""
    from kubeship.core.use_cases.status import get_status

    result = get_status(ctx.obj["project_root"])

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if not result.deployment_count:
        click.echo("No deployments recorded yet. Run `kubeship deploy`.")
        return

    for deploy_id, rec in result.state.deployments.items():
        click.secho(f"\n📦 {rec.resource_name or rec.app_name}", fg="cyan", bold=True, nl=False)
        click.echo(f"  [{rec.framework_kind}, {rec.namespace}, id {deploy_id}]")
        if rec.image:
            click.echo(f"   Image:    {rec.image}")
        if rec.previous_image:
            click.echo(f"   Previous: {rec.previous_image}")
        if rec.pod_phases:
            click.echo(f"   Pods:     {', '.join(rec.pod_phases)}")
        last = rec.last
        if last is not None:
            color = "green" if last.exit_code == 0 else "red"
            click.echo(f"   Last {last.operation}: ", nl=False)
            click.secho(last.state, fg=color, nl=False)
            detail = f" ({last.reason} at {last.stage})" if last.reason else ""
            click.echo(f"{detail} — {last.ended_at}")
    click.echo()


# ── Register command modules ────────────────────────────────────

from kubeship.ui.cli.deploy import cleanup, deploy, render, rollback  # noqa: E402

cli.add_command(deploy)
cli.add_command(cleanup)
cli.add_command(rollback)
cli.add_command(render)


def main() -> None:
    """Entry point for ``python -m kubeship.main``."""
    cli()


if __name__ == "__main__":
    main()
