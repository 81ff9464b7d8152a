"""
CLI commands for binary management — list, install, update, check.

Thin wrappers over the runner and checker held by the AppContext.
"""

from __future__ import annotations

import json
import sys

import click

from gobelt.core.context import AppContext
from gobelt.core.persistence.state_file import load_state
from gobelt.ui.cli.progress import ProgressPrinter, print_summary

_POLL_S = 0.2


def _app(ctx: click.Context) -> AppContext:
    """Build (once) the application context for this invocation."""
    app = ctx.obj.get("app")
    if app is None:
        from gobelt.core.context import build_context

        app = build_context(ctx.obj["settings"])
        ctx.obj["app"] = app
        ctx.call_on_close(app.close)
    return app


def _wait_for_batch(app: AppContext) -> None:
    """Block until the batch ends; Ctrl-C aborts running installs."""
    try:
        while not app.runner.wait(timeout=_POLL_S):
            pass
    except KeyboardInterrupt:
        click.secho("\n⏹  Aborting…", fg="yellow", err=True)
        app.runner.abort()
        app.runner.wait(timeout=5)


def _run_batch(ctx: click.Context, start) -> None:
    app = _app(ctx)
    printer = ProgressPrinter(
        app.runner,
        verbose=ctx.obj.get("verbose", False),
        quiet=ctx.obj.get("quiet", False),
    )
    unsubscribe = app.bus.subscribe(printer)
    try:
        start(app)
        _wait_for_batch(app)
        app.dispatcher.flush(timeout=5)
    finally:
        unsubscribe()

    print_summary(app.runner)
    if app.runner.stats().failed > 0:
        sys.exit(1)


# ── Observe ─────────────────────────────────────────────────────


@click.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_binaries(ctx: click.Context, as_json: bool) -> None:
    """List registered binaries with install and update status."""
    app = _app(ctx)
    cached = load_state(app.checker.state_path).update_info

    rows = []
    for name, binary in app.registry.binaries().items():
        info = cached.get(name)
        rows.append({
            **binary.to_dict(),
            "status": app.registry.status(name),
            "installed_version": info.installed_version if info else None,
            "latest_version": info.latest_version if info else None,
            "has_update": info.has_update if info else False,
        })

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        click.secho("⚠️  No binaries registered — add them to gobelt.yml", fg="yellow")
        return

    click.secho(f"\n🔧 Binaries ({len(rows)}):", fg="cyan", bold=True)
    for row in rows:
        installed = row["status"] == "installed"
        icon = "●" if installed else "○"
        click.secho(f"   {icon} {row['name']:<20}", fg="green" if installed else "red", nl=False)
        version = row["installed_version"] or ("installed" if installed else "missing")
        line = f" {version:<14} {row['source']}"
        if row["has_update"]:
            line += f"  → {row['latest_version']}"
        if row["tags"]:
            line += f"  ({', '.join(row['tags'])})"
        click.echo(line)
    click.echo()


# ── Act ─────────────────────────────────────────────────────────


@click.command()
@click.argument("names", nargs=-1)
@click.pass_context
def install(ctx: click.Context, names: tuple[str, ...]) -> None:
    """Install binaries (default: every missing one).

    Examples:

        gobelt install

        gobelt install freeze glow
    """
    if names:
        _run_batch(ctx, lambda app: app.runner.install(names))
    else:
        _run_batch(ctx, lambda app: app.runner.install_missing())


@click.command()
@click.argument("names", nargs=-1)
@click.pass_context
def update(ctx: click.Context, names: tuple[str, ...]) -> None:
    """Update binaries to @latest (default: all registered)."""
    if names:
        _run_batch(ctx, lambda app: app.runner.update(names))
    else:
        _run_batch(ctx, lambda app: app.runner.update_all())


@click.command()
@click.option("--silent", is_flag=True, help="Only report when updates are found.")
@click.option("--auto", "auto", is_flag=True, help="Skip if the last check is recent enough.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def check(ctx: click.Context, silent: bool, auto: bool, as_json: bool) -> None:
    """Check registered binaries for newer versions."""
    app = _app(ctx)
    printer = ProgressPrinter(
        app.runner,
        verbose=ctx.obj.get("verbose", False),
        quiet=ctx.obj.get("quiet", False) or as_json,
    )
    unsubscribe = app.bus.subscribe(printer)
    try:
        if auto:
            started = app.checker.auto_check()
            if not started and not as_json and not silent:
                click.secho("   ℹ️  Checked recently — using cached results", fg="cyan")
        else:
            app.checker.check(silent=silent or as_json)
        app.checker.wait()
        # Auto-update may have started a batch
        _wait_for_batch(app)
        app.dispatcher.flush(timeout=5)
    finally:
        unsubscribe()

    info = app.checker.get_update_info()
    if as_json:
        click.echo(json.dumps(
            {name: i.model_dump(mode="json") for name, i in info.items()},
            indent=2,
        ))
        return

    if app.runner.stats().total:
        print_summary(app.runner)
        return

    outdated = [i for i in info.values() if i.has_update]
    if outdated:
        click.secho(f"\n📦 Updates ({len(outdated)}):", fg="yellow", bold=True)
        for i in outdated:
            click.echo(f"   {i.name:<20} {i.installed_version:<12} → {i.latest_version}")
        click.echo()
