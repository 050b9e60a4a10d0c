"""CLI entry point: fleetscan.

Subcommands:
    fleetscan scan [--json]                  # Scan every sibling project
    fleetscan audit [--compare snap.json]    # Scan + xref + drift check vs. snapshot
    fleetscan snapshot                       # Scan + xref + save snapshot only
    fleetscan outdated                       # Run `bun outdated` in every project
    fleetscan update FOLDER [PKG...]         # Run `bun update` in one project
    fleetscan info FOLDER PKG                # Print `bun info --json` for a package
"""

from __future__ import annotations

import dataclasses
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import NoReturn

import click

from fleetscan.config import Settings
from fleetscan.context import RunContext
from fleetscan.core.logging import setup_logging
from fleetscan.credentials import load_tokens_into_env, native_keyring, select_credential_store
from fleetscan.discovery import discover_projects
from fleetscan.exceptions import FleetScanError, PackageManagerError, SnapshotWriteError
from fleetscan.models import ProjectRecord, Snapshot
from fleetscan.pm import PackageManager
from fleetscan.pool import scan_all
from fleetscan.snapshot import AuditLog, DriftReport, SnapshotStore, TokenEventLog, diff
from fleetscan.xref import XrefResult, cross_reference

_STATUS_ICONS = {"completed": "+", "failed": "!", "skipped": "-", "running": "~"}


def _scan(ctx: RunContext) -> list[ProjectRecord]:
    settings = ctx.settings
    with ctx.progress.phase("discover") as p:
        dirs = discover_projects(settings.projects_root, exclude=settings.exclude)
        p.detail = f"{len(dirs)} directories"
    # Tokens must be in the environment before workers are spawned.
    store = select_credential_store(native_backend=native_keyring())
    load_tokens_into_env(store, events=TokenEventLog(settings.token_log_path))
    with ctx.progress.phase("scan") as p:
        records = scan_all(dirs, ctx)
        p.detail = f"{sum(r.has_manifest for r in records)} with package.json"
    return records


def _xref(ctx: RunContext, records: Sequence[ProjectRecord], baseline: Snapshot | None) -> XrefResult:
    with ctx.progress.phase("xref") as p:
        result = cross_reference(records, previous=baseline, metrics=ctx.metrics)
        p.detail = f"{len(result.entries)} projects, {result.skipped} unchanged"
    return result


def _fail(exc: FleetScanError) -> NoReturn:
    click.echo(f"Error: {exc}", err=True)
    sys.exit(1)


def _print_drift(report: DriftReport) -> None:
    if not report.detected:
        click.echo("No drift since last snapshot.")
        return
    click.echo("Drift detected:")
    for folder in report.added:
        click.echo(f"  + {folder}")
    for folder in report.removed:
        click.echo(f"  - {folder}")
    for change in report.changed:
        click.echo(
            f"  ~ {change.folder} (default {change.default_delta:+d}, "
            f"explicit {change.explicit_delta:+d}, blocked {change.blocked_delta:+d})"
        )
    click.echo(f"  trusted delta: {report.trusted_delta:+d}, default delta: {report.default_delta:+d}")


def _print_phases(ctx: RunContext) -> None:
    summary = ctx.progress.get_summary()
    click.echo(f"\nPhases (total: {summary['total_duration']}s):")
    for p in summary["phases"]:
        icon = _STATUS_ICONS.get(p["status"], "?")
        duration = f" ({p['duration']}s)" if p["duration"] else ""
        detail = f" - {p['detail']}" if p["detail"] else ""
        click.echo(f"  [{icon}] {p['phase']}{duration}{detail}")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.option("--tz", default=None, help="Timezone for dates (overrides TZ)")
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the projects (default: $FLEETSCAN_HOME or ..)",
)
@click.pass_context
def main(click_ctx: click.Context, verbose: bool, tz: str | None, root: Path | None) -> None:
    """fleetscan: audit a fleet of sibling Bun projects."""
    setup_logging("DEBUG" if verbose else None)
    settings = Settings.from_env()
    if root is not None:
        settings = dataclasses.replace(settings, projects_root=root)
    click_ctx.obj = RunContext.create(settings, tz=tz, verbose=verbose)


@main.command("scan")
@click.option("--json", "as_json", is_flag=True, help="Print records as JSON")
@click.option("--no-ipc", is_flag=True, help="Scan in-process without worker processes")
@click.pass_obj
def scan(ctx: RunContext, as_json: bool, no_ipc: bool) -> None:
    """Scan every project and print a summary table."""
    if no_ipc:
        ctx.settings = dataclasses.replace(ctx.settings, use_ipc=False)
    try:
        records = _scan(ctx)
    except FleetScanError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    click.echo(f"{'FOLDER':<28} {'VERSION':<12} {'DEPS':>5} {'LOCK':<7} {'LINKER':<9} REGISTRY")
    for r in records:
        if not r.has_manifest:
            click.echo(f"{r.folder:<28} {'(no package.json)'}")
            continue
        click.echo(
            f"{r.folder:<28} {r.version:<12} {r.total_deps:>5} {r.lock:<7} "
            f"{r.settings.linker:<9} {r.registry}"
        )
    click.echo(f"\n{len(records)} projects scanned in {ctx.progress.duration_of('scan')}s")


@main.command("audit")
@click.option(
    "--compare",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Snapshot to diff against; exit 1 on drift",
)
@click.option("--no-auto-snapshot", is_flag=True, help="Do not save a new snapshot")
@click.option("--no-ipc", is_flag=True, help="Scan in-process without worker processes")
@click.pass_obj
def audit(ctx: RunContext, compare: Path | None, no_auto_snapshot: bool, no_ipc: bool) -> None:
    """Scan, cross-reference lifecycle hooks and report drift."""
    if no_ipc:
        ctx.settings = dataclasses.replace(ctx.settings, use_ipc=False)
    store = SnapshotStore(ctx.settings.snapshot_path)
    baseline = store.load(compare)
    if compare is not None and baseline is None:
        click.echo(f"Error: {compare} is not a valid snapshot", err=True)
        sys.exit(1)

    try:
        records = _scan(ctx)
        result = _xref(ctx, records, baseline)
    except FleetScanError as e:
        _fail(e)

    blocked = sum(len(e.blocked) for e in result.entries)
    click.echo(
        f"{len(result.entries)} projects with lifecycle hooks: "
        f"{result.total_default_trusted} default-trusted, "
        f"{sum(len(e.explicit_trusted) for e in result.entries)} explicitly trusted, "
        f"{blocked} blocked"
    )
    for entry in result.entries:
        if entry.blocked:
            click.echo(f"  {entry.folder}: blocked {', '.join(entry.blocked)}")

    report = diff(result.entries, baseline) if baseline is not None else None
    if report is not None:
        _print_drift(report)
    else:
        ctx.progress.skip("diff", "no baseline snapshot")

    if no_auto_snapshot:
        ctx.progress.skip("snapshot", "disabled")
    else:
        try:
            with ctx.progress.phase("snapshot"):
                ctx.ensure_audit_dir()
                store.save(result.entries, len(records), ctx)
        except SnapshotWriteError as e:
            click.echo(f"Warning: {e}", err=True)
        else:
            click.echo(f"Snapshot saved to {store.path} ({len(result.entries)} projects)")

    AuditLog(ctx.settings.audit_log_path).append(
        ctx,
        scan_duration=ctx.progress.duration_of("discover", "scan", "xref"),
        drift=report,
        projects=len(records),
    )
    if ctx.verbose:
        _print_phases(ctx)

    if compare is not None and report is not None and report.detected:
        sys.exit(1)


@main.command("snapshot")
@click.pass_obj
def snapshot(ctx: RunContext) -> None:
    """Scan, cross-reference and save a snapshot."""
    store = SnapshotStore(ctx.settings.snapshot_path)
    try:
        records = _scan(ctx)
        result = _xref(ctx, records, store.load())
        ctx.ensure_audit_dir()
        store.save(result.entries, len(records), ctx)
    except FleetScanError as e:
        _fail(e)
    click.echo(f"Snapshot saved to {store.path} ({len(result.entries)} projects, {result.skipped} unchanged)")


@main.command("outdated")
@click.option("--no-ipc", is_flag=True, help="Scan in-process without worker processes")
@click.pass_obj
def outdated(ctx: RunContext, no_ipc: bool) -> None:
    """Run the package manager's outdated check in every project."""
    if no_ipc:
        ctx.settings = dataclasses.replace(ctx.settings, use_ipc=False)
    try:
        records = _scan(ctx)
    except FleetScanError as e:
        _fail(e)

    pm = PackageManager(ctx.settings.pm_binary)
    failures = 0
    for r in records:
        if not r.has_manifest:
            continue
        try:
            packages = pm.outdated(r.path)
        except PackageManagerError as e:
            failures += 1
            click.echo(f"{r.folder}: {e}", err=True)
            continue
        if not packages:
            click.echo(f"{r.folder}: up to date")
            continue
        click.echo(f"{r.folder}: {len(packages)} outdated")
        for pkg in packages:
            bump = f" [{pkg.bump}]" if pkg.bump else ""
            click.echo(f"  {pkg.name} ({pkg.dep_type}) {pkg.current} -> {pkg.latest}{bump}")
    if failures:
        sys.exit(1)


def _project_dir(ctx: RunContext, folder: str) -> Path:
    path = ctx.settings.projects_root / folder
    if not path.is_dir():
        click.echo(f"Error: no project {folder!r} under {ctx.settings.projects_root}", err=True)
        sys.exit(1)
    return path


@main.command("update")
@click.argument("folder")
@click.argument("packages", nargs=-1)
@click.pass_obj
def update(ctx: RunContext, folder: str, packages: tuple[str, ...]) -> None:
    """Run the package manager's update in one project."""
    path = _project_dir(ctx, folder)
    try:
        out = PackageManager(ctx.settings.pm_binary).update(path, packages)
    except PackageManagerError as e:
        _fail(e)
    click.echo(out.rstrip() or f"{folder}: updated")


@main.command("info")
@click.argument("folder")
@click.argument("package")
@click.pass_obj
def info(ctx: RunContext, folder: str, package: str) -> None:
    """Print registry metadata for a package as seen from one project."""
    path = _project_dir(ctx, folder)
    try:
        data = PackageManager(ctx.settings.pm_binary).info(path, package)
    except PackageManagerError as e:
        _fail(e)
    click.echo(json.dumps(data, indent=2))
