"""Click CLI: migrate, add, remove, update, autoremove, version."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from buckify import __version__
from buckify.command_runner import CommandError, SubprocessCommandRunner
from buckify.config import resolve_buck2_binary
from buckify.diagnostics import Diagnostics, Severity
from buckify.errors import BuckifyError
from buckify.manifest import DependencySpec, dep_kind_for, parse_package_spec
from buckify.metadata import MetadataLoader
from buckify.models import PipelineConfig, SyncOutcome
from buckify.pipeline import PipelineResult, run_migrate
from buckify.transactions import Transaction, TransactionResult

_OUTCOME_COLORS = {
    SyncOutcome.APPLIED: "green",
    SyncOutcome.REMOVED: "yellow",
    SyncOutcome.CONFLICT: "red",
    SyncOutcome.FAILED: "red",
}

_SEVERITY_COLORS = {
    Severity.ERROR: "red",
    Severity.WARNING: "yellow",
    Severity.NOTE: "cyan",
}


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "-C", "--directory", "directory",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    help="Run as if started in this directory",
)
@click.option(
    "--manifest-path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to the Cargo.toml of the package to operate on",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, directory: Path, manifest_path: Path | None):
    """cargo-buckify: generate Buck2 BUCK files from a Cargo workspace."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj.setdefault("runner", SubprocessCommandRunner())
    ctx.obj["directory"] = directory.resolve()
    ctx.obj["manifest_path"] = manifest_path.resolve() if manifest_path else None


def _pipeline_config(ctx: click.Context, metadata_file: Path | None = None, **options) -> PipelineConfig:
    directory: Path = ctx.obj["directory"]
    manifest_path: Path | None = ctx.obj["manifest_path"]
    if metadata_file is not None:
        root = directory
    else:
        start = manifest_path.parent if manifest_path else directory
        root = MetadataLoader(ctx.obj["runner"]).locate_workspace_root(start)
    if manifest_path is None and (directory / "Cargo.toml").exists():
        manifest_path = directory / "Cargo.toml"
    return PipelineConfig(
        workspace_root=root,
        manifest_path=manifest_path,
        metadata_file=metadata_file,
        **options,
    )


def _progress(stage: str, current: int, total: int):
    if total > 0:
        click.echo(f"  {stage}: {current}/{total}", nl=(current == total))
    else:
        click.echo(f"  {stage}...")


def _report(result: PipelineResult, changes: list[str] | None = None) -> None:
    for change in changes or []:
        click.echo(f"  {change}")

    for file_result in result.report.results:
        if file_result.outcome == SyncOutcome.UNCHANGED:
            continue
        color = _OUTCOME_COLORS.get(file_result.outcome, "white")
        detail = f"  ({file_result.message})" if file_result.message else ""
        click.echo(f"  {click.style(file_result.outcome.value, fg=color):>20}  {file_result.path.as_posix()}{detail}")

    counts = {o: len(result.report.by_outcome(o)) for o in SyncOutcome}
    click.echo(
        "\nDone: " + ", ".join(f"{n} {o.value}" for o, n in counts.items() if n)
        if any(counts.values()) else "\nDone: nothing to do"
    )
    _echo_diagnostics(result.diagnostics)


def _echo_diagnostics(diagnostics: Diagnostics) -> None:
    if not len(diagnostics):
        return
    click.echo(f"\n{len(diagnostics)} diagnostic(s):", err=True)
    for diag in sorted(diagnostics.items, key=lambda d: list(Severity).index(d.severity), reverse=True):
        click.echo("  " + click.style(str(diag), fg=_SEVERITY_COLORS[diag.severity]), err=True)


def _finish(result: TransactionResult) -> None:
    if result.pipeline is not None:
        _report(result.pipeline, result.changes)
    else:
        for change in result.changes:
            click.echo(f"  {change}")
    if result.out_of_sync:
        raise click.ClickException(
            "Cargo.toml was updated but these BUCK files are out of sync: "
            + ", ".join(result.out_of_sync)
        )


@cli.command()
@click.option("--no-cache", is_flag=True, help="Ignore cached cfg snapshots and probe rustc again")
@click.option("--force", is_flag=True, help="Overwrite generated regions even if edited by hand")
@click.option("--prune", is_flag=True, help="Remove generated files for crates no longer in the graph")
@click.option(
    "--metadata-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read `cargo metadata` JSON from a file instead of running cargo",
)
@click.pass_context
def migrate(ctx: click.Context, no_cache: bool, force: bool, prune: bool, metadata_file: Path | None):
    """Generate or refresh BUCK files for the whole workspace."""
    try:
        config = _pipeline_config(ctx, metadata_file, no_cache=no_cache, force=force, prune=prune)
        click.echo(f"Migrating {config.workspace_root}\n")
        result = run_migrate(config, runner=ctx.obj["runner"], progress=_progress)
    except BuckifyError as e:
        raise click.ClickException(str(e))

    _report(result)
    if not result.report.ok:
        raise click.ClickException("some files could not be synchronized; see the diagnostics above")


@cli.command()
@click.argument("package")
@click.option("--workspace", "-W", is_flag=True, help="Add through [workspace.dependencies]")
@click.option("--features", "-F", help="Comma or space separated features to enable")
@click.option("--rename", help="Name to use for the dependency in code")
@click.option("--dev", is_flag=True, help="Add as a dev-dependency")
@click.option("--build", is_flag=True, help="Add as a build-dependency")
@click.option("--target", help="Platform predicate, e.g. 'cfg(unix)'")
@click.option("--optional", is_flag=True, help="Mark the dependency optional")
@click.pass_context
def add(
    ctx: click.Context,
    package: str,
    workspace: bool,
    features: str | None,
    rename: str | None,
    dev: bool,
    build: bool,
    target: str | None,
    optional: bool,
):
    """Add a dependency to Cargo.toml and regenerate."""
    try:
        name, version = parse_package_spec(package)
        spec = DependencySpec(
            name=name,
            version=version,
            features=[f for f in (features or "").replace(",", " ").split() if f],
            rename=rename,
            optional=optional,
            kind=dep_kind_for(dev, build),
            target=target,
            workspace=workspace,
        )
        result = Transaction(_pipeline_config(ctx), ctx.obj["runner"], _progress).add(spec)
    except BuckifyError as e:
        raise click.ClickException(str(e))
    _finish(result)


@cli.command()
@click.argument("packages", nargs=-1, required=True)
@click.option("--workspace", "-W", is_flag=True, help="Also drop unused [workspace.dependencies] entries")
@click.option("--dev", is_flag=True, help="Remove from dev-dependencies")
@click.option("--build", is_flag=True, help="Remove from build-dependencies")
@click.option("--target", help="Platform predicate table to remove from")
@click.pass_context
def remove(ctx: click.Context, packages: tuple[str, ...], workspace: bool, dev: bool, build: bool, target: str | None):
    """Remove dependencies from Cargo.toml and regenerate."""
    try:
        result = Transaction(_pipeline_config(ctx), ctx.obj["runner"], _progress).remove(
            list(packages), kind=dep_kind_for(dev, build), target=target, workspace=workspace,
        )
    except BuckifyError as e:
        raise click.ClickException(str(e))
    _finish(result)


@cli.command()
@click.argument("packages", nargs=-1)
@click.option("--workspace", "-w", is_flag=True, help="Only update the workspace packages")
@click.option("--dry-run", is_flag=True, help="Don't write the lockfile or regenerate")
@click.pass_context
def update(ctx: click.Context, packages: tuple[str, ...], workspace: bool, dry_run: bool):
    """Update Cargo.lock and regenerate."""
    try:
        result = Transaction(_pipeline_config(ctx), ctx.obj["runner"], _progress).update(
            list(packages), workspace_only=workspace, dry_run=dry_run,
        )
    except BuckifyError as e:
        raise click.ClickException(str(e))
    _finish(result)


@cli.command()
@click.pass_context
def autoremove(ctx: click.Context):
    """Delete generated files of crates that left the dependency graph."""
    try:
        result = Transaction(_pipeline_config(ctx), ctx.obj["runner"], _progress).autoremove()
    except BuckifyError as e:
        raise click.ClickException(str(e))
    _finish(result)


@cli.command()
@click.pass_context
def version(ctx: click.Context):
    """Show the cargo-buckify and buck2 versions."""
    click.echo(f"cargo-buckify {__version__}")
    try:
        buck2 = resolve_buck2_binary()
        output = ctx.obj["runner"].run([str(buck2), "--version"]).stdout.strip()
    except BuckifyError as e:
        raise click.ClickException(str(e))
    except CommandError as e:
        raise click.ClickException(f"buck2 --version failed: {e}")
    click.echo(output)


if __name__ == "__main__":
    cli()
