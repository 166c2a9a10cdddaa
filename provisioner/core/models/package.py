"""
Package mapping model — how one dependency is obtained on one distro.

Mappings are built per (distro, window manager, terminal, variants)
context by the distro strategy and stay immutable for the run.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, model_validator


class RepositoryType(StrEnum):
    """Where a concrete package comes from."""

    SYSTEM = "system"   # distro's own repositories (pacman, dnf, apt, zypper)
    EXTRA = "extra"     # AUR, COPR, PPA
    MANUAL = "manual"   # built from source by a build recipe


class BuildStrategy(StrEnum):
    """Build recipes available to the manual build executor."""

    AUR = "aur"
    DGOP = "dgop"
    GRIMBLAST = "grimblast"
    MATERIAL_SYMBOLS_FONT = "material_symbols_font"
    INTER_FONT = "inter_font"
    GO_INSTALL = "go_install"
    CARGO_GIT = "cargo_git"
    CMAKE_GIT = "cmake_git"
    INSTALLER_SCRIPT = "installer_script"
    SHELL_CONFIG = "shell_config"


class PackageMapping(BaseModel):
    """Concrete package identity for a dependency in one context."""

    model_config = {"frozen": True}

    name: str
    repository: RepositoryType = RepositoryType.SYSTEM
    repo: str | None = None            # COPR slug / PPA / URL
    build: BuildStrategy | None = None

    @model_validator(mode="after")
    def _manual_needs_build(self) -> PackageMapping:
        if self.repository == RepositoryType.MANUAL and self.build is None:
            raise ValueError(f"manual mapping for '{self.name}' has no build strategy")
        return self

    @classmethod
    def system(cls, name: str) -> PackageMapping:
        return cls(name=name, repository=RepositoryType.SYSTEM)

    @classmethod
    def extra(cls, name: str, repo: str | None = None) -> PackageMapping:
        return cls(name=name, repository=RepositoryType.EXTRA, repo=repo)

    @classmethod
    def manual(cls, name: str, build: BuildStrategy) -> PackageMapping:
        return cls(name=name, repository=RepositoryType.MANUAL, build=build)
