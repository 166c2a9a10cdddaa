"""
Dependency model — what the detection layer hands to the installer.

A Dependency is created once by detection and never modified by the
installer. The Selection captures the user's choices (distribution,
window manager, terminal, package variants) that shape the mapping
from dependency names to concrete packages.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class DependencyStatus(StrEnum):
    """Presence state reported by detection."""

    MISSING = "missing"
    INSTALLED = "installed"
    NEEDS_UPDATE = "needs_update"
    NEEDS_REINSTALL = "needs_reinstall"


class PackageVariant(StrEnum):
    """Which upstream flavour of a package to install."""

    STABLE = "stable"
    GIT = "git"


class WindowManager(StrEnum):
    HYPRLAND = "hyprland"
    NIRI = "niri"


class Terminal(StrEnum):
    GHOSTTY = "ghostty"
    KITTY = "kitty"
    ALACRITTY = "alacritty"


class Dependency(BaseModel):
    """A single required component and its detected state."""

    model_config = {"frozen": True}

    name: str
    status: DependencyStatus = DependencyStatus.MISSING
    version: str | None = None
    required: bool = True
    description: str = ""
    variant: PackageVariant = PackageVariant.STABLE

    @property
    def installed(self) -> bool:
        return self.status == DependencyStatus.INSTALLED


class Selection(BaseModel):
    """User choices that select a package mapping context."""

    distro: str
    window_manager: WindowManager = WindowManager.HYPRLAND
    terminal: Terminal = Terminal.GHOSTTY
    variants: dict[str, PackageVariant] = Field(default_factory=dict)

    def variant_for(self, name: str) -> PackageVariant:
        """Variant chosen for a dependency name (stable if unset)."""
        return self.variants.get(name, PackageVariant.STABLE)

    def with_dependency_variants(self, dependencies: list[Dependency]) -> Selection:
        """Merge variants declared on dependencies into the selection.

        Explicit selection entries win over the dependency's own variant.
        """
        merged = {d.name: d.variant for d in dependencies}
        merged.update(self.variants)
        return self.model_copy(update={"variants": merged})
