"""
Installer settings — loaded from provision.yml.

All fields have working defaults so a missing file means "use the
defaults", not an error.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from provisioner.core.models.dependency import PackageVariant, Terminal, WindowManager

DEFAULT_SHELL_CONFIG_REPO = "https://github.com/AvengeMedia/DankMaterialShell.git"


class SelectionDefaults(BaseModel):
    """Default choices used when the CLI does not override them."""

    distro: str | None = None
    window_manager: WindowManager = WindowManager.HYPRLAND
    terminal: Terminal = Terminal.GHOSTTY
    variants: dict[str, PackageVariant] = Field(default_factory=dict)


class InstallerSettings(BaseModel):
    """Tunables for one installer run."""

    version: int = 1

    command_timeout: float = Field(default=600.0, gt=0)   # seconds without output
    tick_interval: float = Field(default=0.2, gt=0)       # synthetic progress tick
    build_root: Path = Field(
        default_factory=lambda: Path.home() / ".cache" / "provisioner" / "builds"
    )
    log_window: int = Field(default=50, ge=1)

    shell_config_repo: str = DEFAULT_SHELL_CONFIG_REPO
    shell_config_dir: Path = Field(
        default_factory=lambda: Path.home() / ".config" / "quickshell" / "dms"
    )
    skip_configuration: bool = False

    defaults: SelectionDefaults = Field(default_factory=SelectionDefaults)
