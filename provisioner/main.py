"""
Desktop Provisioner — CLI entrypoint.

Usage:
    python -m provisioner.main --help
    python -m provisioner.main plan deps.yml --distro fedora
    python -m provisioner.main install deps.yml
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import click

from provisioner import __version__
from provisioner.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="provision")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to provision.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Desktop Provisioner — install a Wayland desktop stack."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("PROV_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("PROV_LOG_FILE"),
        log_file_level=os.environ.get("PROV_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def distros(as_json: bool) -> None:
    """List supported distributions."""
    from provisioner.core.distros.registry import default_registry

    entries = default_registry().entries()

    if as_json:
        click.echo(json.dumps(entries, indent=2))
        return

    click.secho("🐧 Supported distributions:", fg="cyan", bold=True)
    for entry in entries:
        family = f" (→ {entry['family']})" if entry["family"] != entry["id"] else ""
        click.echo(f"   • {entry['id']}{family}  [{entry['package_manager']}]")


# ── Register sub-commands from provisioner/ui/cli/ ──────────────

from provisioner.ui.cli.install import install, plan  # noqa: E402

cli.add_command(plan)
cli.add_command(install)


if __name__ == "__main__":
    cli()
