"""
Manual build executor — source builds, strictly one package at a time.

Every build runs inside ``build_workspace()``: a fresh directory under
the build root that is removed when the build ends, whatever the
outcome. Shared prerequisites are settled before the workspace opens,
so only one build directory exists at any moment.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import sys
import tempfile
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path

from provisioner.core.distros.base import DistroStrategy
from provisioner.core.engine.command_runner import Command, CommandRunner, EventSink
from provisioner.core.errors import InstallCancelled, ManualBuildError, ProvisionError
from provisioner.core.models.package import BuildStrategy, PackageMapping
from provisioner.core.models.progress import InstallPhase, ProgressEvent, interpolate
from provisioner.core.services.build_recipes import (
    RUSTUP_URL,
    BuildContext,
    BuildPaths,
    BuildRecipe,
    BuildStepKind,
    SharedPrerequisite,
    default_recipes,
)

logger = logging.getLogger(__name__)

# Where rustup puts cargo; not on PATH until a new login shell
CARGO_HOME_BIN = "$HOME/.cargo/bin"


@contextmanager
def build_workspace(root: Path, package: str) -> Iterator[Path]:
    """Create a scratch directory for one build and always remove it.

    Raises:
        ManualBuildError: the workspace could not be created.
    """
    try:
        root.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=f"{package}-", dir=root))
    except OSError as e:
        raise ManualBuildError(
            package, BuildStepKind.ACQUIRE.value, f"cannot create build workspace: {e}",
        ) from e
    logger.debug("Build workspace for %s: %s", package, path)
    try:
        yield path
    finally:
        remove_tree(path)


def remove_tree(path: Path) -> None:
    """Delete ``path`` including read-only entries (e.g. a Go module cache)."""
    try:
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=_retry_writable)
        else:
            shutil.rmtree(path, onerror=_retry_writable)
    except FileNotFoundError:
        return
    except OSError as e:
        logger.warning("Could not fully remove build workspace %s: %s", path, e)


def _retry_writable(function, path, excinfo) -> None:
    """rmtree error hook: make the parent directory writable, retry once."""
    error = excinfo[1] if isinstance(excinfo, tuple) else excinfo
    if function not in (os.unlink, os.remove, os.rmdir) or not isinstance(error, PermissionError):
        raise error
    parent = os.path.dirname(path)
    os.chmod(parent, os.stat(parent).st_mode | stat.S_IRWXU)
    function(path)


def tool_available(tool: str) -> bool:
    """True if ``tool`` is on PATH or in the rustup bin directory."""
    if shutil.which(tool):
        return True
    return (Path.home() / ".cargo" / "bin" / tool).exists()


class ManualBuildExecutor:
    """Run build recipes for manual packages.

    Args:
        runner: CommandRunner shared with the rest of the run.
        distro: Strategy used for system installs and presence checks.
        build_root: Parent directory for per-build workspaces.
        recipes: Recipe per build strategy (defaults to all built-ins).
        paths: Install destinations.
    """

    def __init__(
        self,
        runner: CommandRunner,
        distro: DistroStrategy,
        build_root: Path,
        recipes: Mapping[BuildStrategy, BuildRecipe] | None = None,
        paths: BuildPaths | None = None,
    ) -> None:
        self._runner = runner
        self._distro = distro
        self._build_root = Path(build_root)
        self._recipes = recipes if recipes is not None else default_recipes()
        self._paths = paths or BuildPaths()
        self._settled: set[str] = set()

    def build_all(
        self,
        packages: list[PackageMapping],
        phase: InstallPhase,
        start: float,
        end: float,
        emit: EventSink,
        *,
        strategy: BuildStrategy | None = None,
    ) -> list[str]:
        """Build ``packages`` in order; stop at the first failure.

        ``strategy`` overrides each mapping's own build strategy (used
        for AUR extra-repo packages, whose mappings carry none).

        Returns:
            Names of the packages built.
        """
        built: list[str] = []
        count = len(packages)
        for i, mapping in enumerate(packages):
            lo = interpolate(start, end, i / count)
            hi = interpolate(start, end, (i + 1) / count)
            self.build(mapping, phase, lo, hi, emit, strategy=strategy)
            built.append(mapping.name)
        return built

    def build(
        self,
        mapping: PackageMapping,
        phase: InstallPhase,
        start: float,
        end: float,
        emit: EventSink,
        *,
        strategy: BuildStrategy | None = None,
    ) -> None:
        """Build and install one package.

        Raises:
            ManualBuildError: any step failed (cause chained).
            InstallCancelled: the run was cancelled.
        """
        package = mapping.name
        strategy = strategy or mapping.build
        recipe = self._recipes.get(strategy) if strategy else None
        if recipe is None:
            raise ManualBuildError(package, "dispatch", f"no build recipe for strategy {strategy}")

        steps = recipe.steps(package)
        shared = recipe.shared_prerequisites(package)
        slots = len(steps) + (1 if shared else 0)

        def slot(i: int) -> tuple[float, float]:
            return interpolate(start, end, i / slots), interpolate(start, end, (i + 1) / slots)

        logger.info("Building %s (%s)", package, strategy.value)
        emit(ProgressEvent(
            phase=phase,
            progress=start,
            step=f"Building {package}...",
            command_info=f"{strategy.value} build of {package}",
        ))

        if shared:
            lo, hi = slot(0)
            for prereq in shared:
                try:
                    self._ensure(prereq, phase, lo, hi, emit)
                except InstallCancelled:
                    raise
                except (ProvisionError, OSError) as e:
                    raise ManualBuildError(package, BuildStepKind.PREREQUISITES.value, str(e)) from e

        offset = 1 if shared else 0
        with build_workspace(self._build_root, package) as workspace:
            ctx = BuildContext(
                package=package,
                workspace=workspace,
                runner=self._runner,
                distro=self._distro,
                paths=self._paths,
                emit=emit,
                phase=phase,
                env={"PATH": f"{CARGO_HOME_BIN}:$PATH"},
            )
            for i, (kind, action) in enumerate(steps):
                lo, hi = slot(i + offset)
                ctx.enter(kind, lo, hi)
                logger.debug("%s: %s", package, kind.value)
                try:
                    action(ctx)
                except (InstallCancelled, ManualBuildError):
                    raise
                except (ProvisionError, OSError) as e:
                    raise ManualBuildError(package, kind.value, str(e)) from e

        logger.info("Built and installed %s", package)

    # ── Shared prerequisites ────────────────────────────────────

    def _ensure(
        self,
        prereq: SharedPrerequisite,
        phase: InstallPhase,
        start: float,
        end: float,
        emit: EventSink,
    ) -> None:
        """Check, then install only if missing."""
        if prereq.name in self._settled:
            return

        if prereq.tool:
            if tool_available(prereq.tool):
                logger.debug("Tool %s already available", prereq.tool)
            else:
                self._install_tool(prereq.tool, phase, start, end, emit)
        elif self._runner.run_quiet(self._distro.is_installed(prereq.name)):
            logger.debug("Shared prerequisite %s already installed", prereq.name)
        else:
            logger.info("Installing shared prerequisite %s", prereq.name)
            self.build(
                PackageMapping.manual(prereq.name, prereq.strategy or BuildStrategy.AUR),
                phase, start, end, emit,
            )
        self._settled.add(prereq.name)

    def _install_tool(
        self,
        tool: str,
        phase: InstallPhase,
        start: float,
        end: float,
        emit: EventSink,
    ) -> None:
        step = f"Installing {tool} toolchain..."
        if tool == "cargo":
            with build_workspace(self._build_root, "rustup") as workspace:
                script = workspace / "rustup-init.sh"
                mid = interpolate(start, end, 0.3)
                self._runner.run(
                    Command(["curl", "--proto", "=https", "--tlsv1.2", "-sSf", "-o", str(script), RUSTUP_URL]),
                    phase, start, mid, emit, step=step,
                )
                self._runner.run(
                    Command(["sh", str(script), "-y", "--profile", "minimal"]),
                    phase, mid, end, emit, step=step,
                )
            return

        package = self._distro.toolchain_packages.get(tool)
        if package is None:
            raise ManualBuildError(tool, BuildStepKind.PREREQUISITES.value, "no package provides this tool")
        for command in self._distro.system_install([package]):
            self._runner.run(command, phase, start, end, emit, step=step)
