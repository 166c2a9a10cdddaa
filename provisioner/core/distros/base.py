"""
Distro strategy — everything that differs between distribution families.

A strategy answers "which command?" questions only. It never runs
anything itself: the scheduler, repository enabler and build executor
hold the shared tools (runner, categorizer) and ask the strategy for
argv lists.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from provisioner.core.engine.command_runner import Command
from provisioner.core.models.dependency import Selection
from provisioner.core.models.package import BuildStrategy, PackageMapping


@dataclass(frozen=True)
class Prerequisite:
    """A tool the installer needs before any package work.

    ``check`` exits 0 when the tool is present; ``install`` runs only
    when it does not.
    """

    name: str
    check: Command | None
    install: list[Command] = field(default_factory=list)


class DistroStrategy(ABC):
    """Per-family command vocabulary and package mapping table."""

    id: str = ""
    aliases: tuple[str, ...] = ()
    package_manager: str = ""

    # Set when extra-repo packages are built per package rather than
    # installed in one batch (AUR on Arch).
    extra_build: BuildStrategy | None = None

    # System packages required to build a manual package from source.
    build_requirements: Mapping[str, tuple[str, ...]] = MappingProxyType({})

    # Distro package providing a command-line toolchain
    toolchain_packages: Mapping[str, str] = MappingProxyType({"go": "go"})

    def __init__(self, distro_id: str | None = None) -> None:
        self.distro_id = distro_id or self.id

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.distro_id!r})"

    # ── Mapping ─────────────────────────────────────────────────

    def mapping_table(self, selection: Selection) -> Mapping[str, PackageMapping]:
        """Immutable dependency-name → package mapping for one context."""
        return MappingProxyType(dict(self._mappings(selection)))

    @abstractmethod
    def _mappings(self, selection: Selection) -> dict[str, PackageMapping]:
        ...

    # ── Commands ────────────────────────────────────────────────

    @abstractmethod
    def prerequisites(self) -> list[Prerequisite]:
        ...

    @abstractmethod
    def system_install(self, packages: list[str]) -> list[Command]:
        ...

    def extra_install(self, packages: list[str]) -> list[Command]:
        """Install extra-repo packages once their repositories are enabled."""
        return self.system_install(packages)

    def enable_repository(self, identity: str) -> Command | None:
        """Command enabling one extra repository (None: nothing to enable)."""
        return None

    def repository_pre_enable(self) -> list[Command]:
        """Commands run once before the first repository is enabled."""
        return []

    def repository_refresh(self) -> list[Command]:
        """Commands run once after at least one repository was enabled."""
        return []

    @abstractmethod
    def is_installed(self, package: str) -> Command:
        """Read-only query; exits 0 when ``package`` is installed."""

    def build_dependencies(self, packages: list[str]) -> list[str]:
        """System packages needed to build ``packages``, de-duplicated in order."""
        seen: dict[str, None] = {}
        for pkg in packages:
            for dep in self.build_requirements.get(pkg, ()):
                seen.setdefault(dep, None)
        return list(seen)
