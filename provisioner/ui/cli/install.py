"""
CLI commands for planning and running an installation.

Thin wrappers over ``provisioner.core.services.scheduler``.
"""

from __future__ import annotations

import json
import platform
import sys
from pathlib import Path

import click

from provisioner.core.models.dependency import PackageVariant, Selection, Terminal, WindowManager
from provisioner.core.models.progress import ProgressEvent
from provisioner.core.models.settings import InstallerSettings


def _load_settings(ctx: click.Context) -> InstallerSettings:
    from provisioner.core.config.loader import ConfigError, load_settings

    try:
        return load_settings(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


def _load_dependencies(path: str) -> list:
    from provisioner.core.config.loader import ConfigError, load_dependencies

    try:
        return load_dependencies(Path(path))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


def _host_distro() -> str | None:
    """ID from /etc/os-release, if readable."""
    try:
        return platform.freedesktop_os_release().get("ID")
    except OSError:
        return None


def _parse_variants(values: tuple[str, ...]) -> dict[str, PackageVariant]:
    variants: dict[str, PackageVariant] = {}
    for item in values:
        name, sep, variant = item.partition("=")
        if not sep or variant not in {v.value for v in PackageVariant}:
            raise click.BadParameter(f"expected NAME=stable|git, got '{item}'", param_hint="--variant")
        variants[name] = PackageVariant(variant)
    return variants


def _build_selection(
    settings: InstallerSettings,
    distro: str | None,
    wm: str | None,
    terminal: str | None,
    variant: tuple[str, ...],
) -> Selection:
    defaults = settings.defaults
    distro_id = distro or defaults.distro or _host_distro()
    if not distro_id:
        click.secho("❌ Cannot determine the distribution; pass --distro", fg="red", err=True)
        sys.exit(1)
    return Selection(
        distro=distro_id,
        window_manager=WindowManager(wm) if wm else defaults.window_manager,
        terminal=Terminal(terminal) if terminal else defaults.terminal,
        variants={**defaults.variants, **_parse_variants(variant)},
    )


def _selection_options(fn):
    """Options shared by ``plan`` and ``install``."""
    options = [
        click.argument("deps_file", type=click.Path(exists=True, dir_okay=False)),
        click.option("--distro", default=None, help="Distribution id (default: from settings or /etc/os-release)."),
        click.option("--wm", type=click.Choice([w.value for w in WindowManager]), default=None,
                     help="Window manager."),
        click.option("--terminal", type=click.Choice([t.value for t in Terminal]), default=None,
                     help="Terminal emulator."),
        click.option("--variant", multiple=True, metavar="NAME=stable|git",
                     help="Package variant override (repeatable)."),
        click.option("--reinstall", multiple=True, metavar="NAME",
                     help="Reinstall an already installed dependency (repeatable)."),
        click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


# ── Plan ────────────────────────────────────────────────────────


@click.command()
@_selection_options
@click.pass_context
def plan(
    ctx: click.Context,
    deps_file: str,
    distro: str | None,
    wm: str | None,
    terminal: str | None,
    variant: tuple[str, ...],
    reinstall: tuple[str, ...],
    as_json: bool,
) -> None:
    """Show what an install would do, without running anything."""
    from provisioner.core.distros.registry import default_registry
    from provisioner.core.engine.command_runner import CommandRunner
    from provisioner.core.errors import UnsupportedDistributionError
    from provisioner.core.services.scheduler import PhaseScheduler

    settings = _load_settings(ctx)
    deps = _load_dependencies(deps_file)
    selection = _build_selection(settings, distro, wm, terminal, variant)

    try:
        strategy = default_registry().get(selection.distro)
    except UnsupportedDistributionError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    result = PhaseScheduler(strategy, CommandRunner(), settings).plan(deps, selection, reinstall)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.secho(f"\n📋 Install plan for {strategy.distro_id} ({strategy.package_manager})", fg="cyan", bold=True)
    sections = [
        ("System packages", result.system),
        ("Extra repository packages", [
            f"{m.name} ({m.repo})" if m.repo else m.name for m in result.extra
        ]),
        ("Manual builds", [f"{m.name} [{m.build}]" for m in result.manual]),
    ]
    for title, items in sections:
        click.secho(f"   {title}: {len(items)}", fg="white", bold=True)
        for item in items:
            click.echo(f"     • {item}")

    if result.skipped and not ctx.obj.get("quiet"):
        click.echo(f"   Already installed: {', '.join(result.skipped)}")

    if result.unresolved:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warning in result.unresolved:
            click.echo(f"   • {warning}")

    if result.is_empty:
        click.secho("✅ Nothing to install", fg="green")
    click.echo()


# ── Install ─────────────────────────────────────────────────────


def _render(event: ProgressEvent, quiet: bool, last_step: list[str]) -> None:
    if event.error is not None:
        return
    header = f"{event.phase.label}: {event.step}"
    if header != last_step[0] and not event.log_output:
        last_step[0] = header
        click.secho(f"[{event.progress * 100:3.0f}%] ", fg="cyan", nl=False)
        click.echo(header)
        if event.command_info and not quiet:
            prefix = "🔒 " if event.needs_privilege else "$ "
            click.secho(f"       {prefix}{event.command_info}", dim=True)
    elif event.log_output and not quiet:
        click.secho(f"       │ {event.log_output}", dim=True)
    if event.is_complete:
        click.secho("✅ Installation complete", fg="green", bold=True)


@click.command()
@_selection_options
@click.option("--no-password", is_flag=True, help="Do not prompt for the sudo password.")
@click.pass_context
def install(
    ctx: click.Context,
    deps_file: str,
    distro: str | None,
    wm: str | None,
    terminal: str | None,
    variant: tuple[str, ...],
    reinstall: tuple[str, ...],
    as_json: bool,
    no_password: bool,
) -> None:
    """Install every missing dependency listed in DEPS_FILE."""
    from provisioner.core.credential import SudoCredential
    from provisioner.core.distros.registry import default_registry
    from provisioner.core.engine.command_runner import CommandRunner
    from provisioner.core.errors import UnsupportedDistributionError
    from provisioner.core.services.scheduler import stream_install

    settings = _load_settings(ctx)
    deps = _load_dependencies(deps_file)
    selection = _build_selection(settings, distro, wm, terminal, variant)
    registry = default_registry()

    if selection.distro not in registry:
        click.secho(f"❌ {UnsupportedDistributionError(selection.distro)}", fg="red", err=True)
        sys.exit(1)

    credential = SudoCredential()
    if not no_password and not SudoCredential.running_as_root():
        credential = SudoCredential(click.prompt("sudo password", hide_input=True, err=True))

    stream = stream_install(
        deps, selection, credential,
        reinstall=reinstall, settings=settings, registry=registry,
    )
    quiet = ctx.obj.get("quiet", False)
    last_step = [""]
    try:
        for event in stream:
            if as_json:
                click.echo(json.dumps(event.to_dict()))
            else:
                _render(event, quiet, last_step)
    except KeyboardInterrupt:
        click.secho("\n⏹  Cancelling...", fg="yellow", err=True)
        stream.close()

    report = stream.report
    if report is None:
        click.secho("❌ Installation did not produce a result", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(report.to_dict()))
    elif not report.ok:
        click.secho(f"\n❌ {report.error}", fg="red", bold=True, err=True)
        if report.log_lines:
            click.secho("   Last output:", fg="white", bold=True, err=True)
            for line in report.log_lines:
                click.echo(f"     {line}", err=True)

    if report.cancelled:
        sys.exit(130)
    if not report.ok:
        sys.exit(1)
