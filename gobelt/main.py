"""
gobelt — CLI entrypoint.

Usage:
    gobelt --help
    gobelt list
    gobelt install [NAME...]
    gobelt update [NAME...]
    gobelt check [--auto]
    gobelt health
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from gobelt import __version__
from gobelt.core.observability.logging_config import resolve_level, setup_from_env


@click.group()
@click.version_option(version=__version__, prog_name="gobelt")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to gobelt.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """gobelt — manage the Go binaries your tools depend on."""
    ctx.ensure_object(dict)
    ctx.obj.update(verbose=verbose, quiet=quiet, debug=debug)

    setup_from_env(resolve_level(debug=debug, verbose=verbose, quiet=quiet))

    from gobelt.core.config.loader import ConfigError, load_settings

    try:
        ctx.obj["settings"] = load_settings(Path(config_path) if config_path else None)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def health(ctx: click.Context, as_json: bool) -> None:
    """Check Go, GOBIN and registered binaries."""
    from gobelt.core.observability.health import check_system_health
    from gobelt.core.services.registry import BinaryRegistry

    settings = ctx.obj["settings"]
    registry = BinaryRegistry.from_specs(settings.binaries)
    result = check_system_health(settings, registry)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        status_color = {
            "healthy": "green",
            "degraded": "yellow",
            "unhealthy": "red",
        }.get(result.status, "white")
        click.secho(f"\n🩺 gobelt: {result.status}", fg=status_color, bold=True)
        for comp in result.components:
            icon = {"healthy": "✓", "degraded": "⚠", "unhealthy": "✗"}.get(comp.status, "·")
            click.echo(f"   {icon} {comp.name}: {comp.message}")
            if comp.name == "binaries" and ctx.obj.get("verbose"):
                for name, detail in comp.details.items():
                    tags = f" ({', '.join(detail['tags'])})" if detail["tags"] else ""
                    click.echo(f"       • {name} — {detail['status']}{tags}")
        click.echo()

    if result.status == "unhealthy":
        sys.exit(1)


# ── Register commands from gobelt/ui/cli/ ───────────────────────

from gobelt.ui.cli.binaries import check, install, list_binaries, update  # noqa: E402

cli.add_command(list_binaries)
cli.add_command(install)
cli.add_command(update)
cli.add_command(check)


if __name__ == "__main__":
    cli()
