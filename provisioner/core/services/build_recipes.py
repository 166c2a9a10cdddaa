"""
Build recipes — how each manual package is fetched, built and installed.

A recipe is an ordered list of ``(BuildStepKind, action)`` pairs for
one package. Actions run inside a ``BuildContext`` whose ``run()``
delegates every external command to the CommandRunner. Recipes are
resolved once, by ``BuildStrategy`` enum member.

Step order is fixed per package identity:

    ACQUIRE → PATCH → PREREQUISITES → BUILD → LOCATE → INSTALL

Recipes omit the steps they do not need.
"""

from __future__ import annotations

import logging
import re
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType

from provisioner.core.distros.base import DistroStrategy
from provisioner.core.engine.command_runner import Command, CommandRunner, EventSink
from provisioner.core.errors import ManualBuildError
from provisioner.core.models.package import BuildStrategy
from provisioner.core.models.progress import InstallPhase

logger = logging.getLogger(__name__)


class BuildStepKind(StrEnum):
    ACQUIRE = "acquire"
    PATCH = "patch"
    PREREQUISITES = "prerequisites"
    BUILD = "build"
    LOCATE = "locate"
    INSTALL = "install"


# ── Sources ─────────────────────────────────────────────────────

AUR_URL = "https://aur.archlinux.org/{package}.git"
DGOP_REPO = "https://github.com/AvengeMedia/dgop.git"
HYPR_CONTRIB_REPO = "https://github.com/hyprwm/contrib.git"
MATERIAL_SYMBOLS_URL = (
    "https://github.com/google/material-design-icons/raw/master/variablefont/"
    "MaterialSymbolsRounded%5BFILL%2CGRAD%2Copsz%2Cwght%5D.ttf"
)
INTER_URL = "https://github.com/rsms/inter/releases/download/v4.0/Inter-4.0.zip"
RUSTUP_URL = "https://sh.rustup.rs"

GO_MODULES: Mapping[str, str] = MappingProxyType({
    "cliphist": "go.senan.xyz/cliphist",
})

CARGO_SOURCES: Mapping[str, str] = MappingProxyType({
    "matugen": "https://github.com/InioX/matugen.git",
    "niri": "https://github.com/YaLTeR/niri.git",
})

CMAKE_SOURCES: Mapping[str, str] = MappingProxyType({
    "quickshell": "https://git.outfoxxed.me/quickshell/quickshell.git",
    "hyprland": "https://github.com/hyprwm/Hyprland.git",
    "hyprpicker": "https://github.com/hyprwm/hyprpicker.git",
})

INSTALLER_SCRIPTS: Mapping[str, str] = MappingProxyType({
    "ghostty": "https://raw.githubusercontent.com/mkasberg/ghostty-ubuntu/HEAD/install.sh",
})

# ── AUR metadata rules ──────────────────────────────────────────

# Dependencies the bundle gets from sibling builds in the same run
AUR_BUNDLED_DEPENDS: Mapping[str, frozenset[str]] = MappingProxyType({
    "dms-shell-git": frozenset({
        "quickshell", "quickshell-git", "dgop", "ttf-material-symbols-variable-git",
    }),
})

# Dependencies not installable via pacman; built beforehand instead
AUR_DEPENDENCY_EXCLUSIONS: Mapping[str, frozenset[str]] = MappingProxyType({
    "quickshell": frozenset({"google-breakpad"}),
    "quickshell-git": frozenset({"google-breakpad"}),
})

AUR_SHARED_PREREQUISITES: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "quickshell": ("google-breakpad",),
    "quickshell-git": ("google-breakpad",),
    "niri-git": ("makepkg-git-lfs-proto",),
})

_LFS_PROTO = "makepkg-git-lfs-proto"


@dataclass(frozen=True)
class BuildPaths:
    """Install destinations used by the recipes."""

    fonts_dir: Path = field(default_factory=lambda: Path.home() / ".local" / "share" / "fonts")
    bin_dir: Path = Path("/usr/local/bin")
    shell_config_repo: str = "https://github.com/AvengeMedia/DankMaterialShell.git"
    shell_config_dir: Path = field(
        default_factory=lambda: Path.home() / ".config" / "quickshell" / "dms"
    )


@dataclass(frozen=True)
class SharedPrerequisite:
    """Something a build needs first: checked, then installed only if missing.

    Exactly one of ``strategy`` (a package built by that recipe) or
    ``tool`` (a command-line tool) is set.
    """

    name: str
    strategy: BuildStrategy | None = None
    tool: str | None = None


@dataclass
class BuildContext:
    """Everything a recipe step can touch for one package build."""

    package: str
    workspace: Path
    runner: CommandRunner
    distro: DistroStrategy
    paths: BuildPaths
    emit: EventSink
    phase: InstallPhase
    env: dict[str, str] = field(default_factory=dict)
    artifacts: list[Path] = field(default_factory=list)
    step: BuildStepKind = BuildStepKind.ACQUIRE
    start: float = 0.0
    end: float = 0.0

    @property
    def source(self) -> Path:
        return self.workspace / self.package

    def enter(self, step: BuildStepKind, start: float, end: float) -> None:
        self.step, self.start, self.end = step, start, end

    def run(
        self,
        argv: list[str],
        *,
        privileged: bool = False,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        label: str = "",
    ) -> str:
        return self.run_command(Command(
            argv,
            privileged=privileged,
            cwd=cwd,
            env={**self.env, **(env or {})},
            label=label,
        ))

    def run_command(self, command: Command) -> str:
        return self.runner.run(
            command, self.phase, self.start, self.end, self.emit,
            step=f"{self.package}: {self.step.value}...",
        )

    def fail(self, reason: str) -> ManualBuildError:
        return ManualBuildError(self.package, self.step.value, reason)


Action = Callable[[BuildContext], None]
Steps = list[tuple[BuildStepKind, Action]]


class BuildRecipe:
    """Base recipe: a name and the steps for one package."""

    strategy: BuildStrategy

    def steps(self, package: str) -> Steps:
        raise NotImplementedError

    def shared_prerequisites(self, package: str) -> list[SharedPrerequisite]:
        return []


# ── Shared step actions ─────────────────────────────────────────


def install_build_dependencies(ctx: BuildContext) -> None:
    deps = ctx.distro.build_dependencies([ctx.package])
    if not deps:
        logger.debug("%s: no build dependencies", ctx.package)
        return
    for command in ctx.distro.system_install(deps):
        ctx.run_command(command)


def clone(url: str, *, recursive: bool = False) -> Action:
    def action(ctx: BuildContext) -> None:
        argv = ["git", "clone", "--depth", "1"]
        if recursive:
            argv.append("--recursive")
        ctx.run([*argv, url, str(ctx.source)])
    return action


def download(url: str, filename: str) -> Action:
    def action(ctx: BuildContext) -> None:
        ctx.run(["curl", "-fL", "--retry", "3", "-o", str(ctx.workspace / filename), url])
    return action


def locate(pattern: str, *, under: str = "", recursive: bool = True) -> Action:
    """Collect artifacts matching ``pattern`` below ``under``.

    ``recursive=False`` looks in ``under`` itself only (makepkg output,
    which must not pick up files from its ``src/`` and ``pkg/`` trees).
    """
    def action(ctx: BuildContext) -> None:
        base = ctx.workspace / under if under else ctx.workspace
        matches = base.rglob(pattern) if recursive else base.glob(pattern)
        found = sorted(p for p in matches if p.is_file())
        if not found:
            raise ctx.fail(f"no artifact matching '{pattern}' in {base}")
        logger.debug("%s: located %s", ctx.package, [p.name for p in found])
        ctx.artifacts = found
    return action


def install_binaries(ctx: BuildContext) -> None:
    for artifact in ctx.artifacts:
        target = ctx.paths.bin_dir / artifact.name
        ctx.run(["install", "-Dm755", str(artifact), str(target)], privileged=True)


def install_fonts(ctx: BuildContext) -> None:
    ctx.paths.fonts_dir.mkdir(parents=True, exist_ok=True)
    for artifact in ctx.artifacts:
        shutil.copy2(artifact, ctx.paths.fonts_dir / artifact.name)
        logger.info("Installed font %s", artifact.name)
    ctx.run(["fc-cache", "-f"])


# ── AUR ─────────────────────────────────────────────────────────


def parse_srcinfo(text: str) -> dict[str, list[str]]:
    """Collect ``key = value`` pairs of a .SRCINFO, keyed by field name."""
    fields: dict[str, list[str]] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or " = " not in line:
            continue
        key, value = line.split(" = ", 1)
        fields.setdefault(key.strip(), []).append(value.strip())
    return fields


def _bare_name(dep: str) -> str:
    """``foo>=1.2`` → ``foo``."""
    return re.split(r"[<>=]", dep, maxsplit=1)[0]


def patch_srcinfo(package: str, text: str) -> str:
    """Strip metadata that must not drive dependency installation."""
    bundled = AUR_BUNDLED_DEPENDS.get(package, frozenset())
    kept = []
    for raw in text.splitlines():
        line = raw.strip()
        key, _, value = line.partition(" = ")
        if key == "optdepends":
            continue
        if key == "depends" and _bare_name(value) in bundled:
            continue
        if package == "niri-git" and key == "makedepends" and _bare_name(value) == _LFS_PROTO:
            continue
        kept.append(raw)
    return "\n".join(kept) + "\n"


def build_dependencies_from_srcinfo(package: str, text: str) -> tuple[list[str], list[str]]:
    """(depends, makedepends) to pre-install, excluding known irrelevant items."""
    fields = parse_srcinfo(text)
    excluded = AUR_DEPENDENCY_EXCLUSIONS.get(package, frozenset())

    def pick(key: str, skip: set[str]) -> list[str]:
        out: list[str] = []
        for dep in fields.get(key, []):
            name = _bare_name(dep)
            if name in excluded or name in skip or name in out:
                continue
            out.append(name)
        return out

    depends = pick("depends", set())
    makedepends = pick("makedepends", set(depends))
    return depends, makedepends


class AURRecipe(BuildRecipe):
    strategy = BuildStrategy.AUR

    def shared_prerequisites(self, package: str) -> list[SharedPrerequisite]:
        return [
            SharedPrerequisite(name, strategy=BuildStrategy.AUR)
            for name in AUR_SHARED_PREREQUISITES.get(package, ())
        ]

    def steps(self, package: str) -> Steps:
        return [
            (BuildStepKind.ACQUIRE, self._acquire),
            (BuildStepKind.PATCH, self._patch),
            (BuildStepKind.PREREQUISITES, self._prerequisites),
            (BuildStepKind.BUILD, self._build),
            (BuildStepKind.LOCATE, locate("*.pkg.tar*", under=package, recursive=False)),
            (BuildStepKind.INSTALL, self._install),
        ]

    @staticmethod
    def _acquire(ctx: BuildContext) -> None:
        ctx.run(["git", "clone", AUR_URL.format(package=ctx.package), str(ctx.source)])

    @staticmethod
    def _patch(ctx: BuildContext) -> None:
        srcinfo = ctx.source / ".SRCINFO"
        if not srcinfo.exists():
            raise ctx.fail(".SRCINFO missing from AUR checkout")
        srcinfo.write_text(patch_srcinfo(ctx.package, srcinfo.read_text()))

        if ctx.package == "niri-git":
            pkgbuild = ctx.source / "PKGBUILD"
            pkgbuild.write_text(pkgbuild.read_text().replace(_LFS_PROTO, ""))

    @staticmethod
    def _prerequisites(ctx: BuildContext) -> None:
        depends, makedepends = build_dependencies_from_srcinfo(
            ctx.package, (ctx.source / ".SRCINFO").read_text(),
        )
        for group in (depends, makedepends):
            if group:
                ctx.run(["pacman", "-S", "--needed", "--noconfirm", *group], privileged=True)

    @staticmethod
    def _build(ctx: BuildContext) -> None:
        ctx.run(["makepkg", "--noconfirm"], cwd=ctx.source, env={"PKGEXT": ".pkg.tar"})

    @staticmethod
    def _install(ctx: BuildContext) -> None:
        files = [str(p) for p in ctx.artifacts]
        ctx.run(["pacman", "-U", "--noconfirm", *files], privileged=True)


# ── Source builds ───────────────────────────────────────────────


class DgopRecipe(BuildRecipe):
    strategy = BuildStrategy.DGOP

    def shared_prerequisites(self, package: str) -> list[SharedPrerequisite]:
        return [SharedPrerequisite("go", tool="go")]

    def steps(self, package: str) -> Steps:
        return [
            (BuildStepKind.ACQUIRE, clone(DGOP_REPO)),
            (BuildStepKind.PREREQUISITES, install_build_dependencies),
            (BuildStepKind.BUILD, lambda ctx: ctx.run(["make"], cwd=ctx.source)),
            (BuildStepKind.INSTALL, lambda ctx: ctx.run(["make", "install"], privileged=True, cwd=ctx.source)),
        ]


class GrimblastRecipe(BuildRecipe):
    strategy = BuildStrategy.GRIMBLAST

    def steps(self, package: str) -> Steps:
        return [
            (BuildStepKind.ACQUIRE, clone(HYPR_CONTRIB_REPO)),
            (BuildStepKind.PREREQUISITES, install_build_dependencies),
            (BuildStepKind.INSTALL, lambda ctx: ctx.run(
                ["make", "install"], privileged=True, cwd=ctx.source / "grimblast",
            )),
        ]


class MaterialSymbolsFontRecipe(BuildRecipe):
    strategy = BuildStrategy.MATERIAL_SYMBOLS_FONT

    def steps(self, package: str) -> Steps:
        return [
            (BuildStepKind.ACQUIRE, download(MATERIAL_SYMBOLS_URL, "MaterialSymbolsRounded.ttf")),
            (BuildStepKind.LOCATE, locate("MaterialSymbols*.ttf")),
            (BuildStepKind.INSTALL, install_fonts),
        ]


class InterFontRecipe(BuildRecipe):
    strategy = BuildStrategy.INTER_FONT

    def steps(self, package: str) -> Steps:
        return [
            (BuildStepKind.ACQUIRE, download(INTER_URL, "inter.zip")),
            (BuildStepKind.BUILD, lambda ctx: ctx.run(
                ["unzip", "-o", "-q", str(ctx.workspace / "inter.zip"), "-d", str(ctx.source)],
            )),
            (BuildStepKind.LOCATE, locate("InterVariable*.ttf")),
            (BuildStepKind.INSTALL, install_fonts),
        ]


class GoInstallRecipe(BuildRecipe):
    strategy = BuildStrategy.GO_INSTALL

    def shared_prerequisites(self, package: str) -> list[SharedPrerequisite]:
        return [SharedPrerequisite("go", tool="go")]

    def steps(self, package: str) -> Steps:
        def build(ctx: BuildContext) -> None:
            module = GO_MODULES.get(ctx.package)
            if module is None:
                raise ctx.fail("no Go module known for this package")
            ctx.run(
                ["go", "install", f"{module}@latest"],
                env={
                    "GOBIN": str(ctx.workspace / "bin"),
                    "GOPATH": str(ctx.workspace / "go"),
                    # module cache stays writable so the workspace can be removed
                    "GOFLAGS": "-modcacherw",
                },
            )

        return [
            (BuildStepKind.PREREQUISITES, install_build_dependencies),
            (BuildStepKind.BUILD, build),
            (BuildStepKind.LOCATE, locate(package, under="bin")),
            (BuildStepKind.INSTALL, install_binaries),
        ]


class CargoGitRecipe(BuildRecipe):
    strategy = BuildStrategy.CARGO_GIT

    def shared_prerequisites(self, package: str) -> list[SharedPrerequisite]:
        return [SharedPrerequisite("cargo", tool="cargo")]

    def steps(self, package: str) -> Steps:
        def build(ctx: BuildContext) -> None:
            url = CARGO_SOURCES.get(ctx.package)
            if url is None:
                raise ctx.fail("no git source known for this package")
            ctx.run(["cargo", "install", "--locked", "--git", url, "--root", str(ctx.workspace)])

        return [
            (BuildStepKind.PREREQUISITES, install_build_dependencies),
            (BuildStepKind.BUILD, build),
            (BuildStepKind.LOCATE, locate(package, under="bin")),
            (BuildStepKind.INSTALL, install_binaries),
        ]


class CMakeGitRecipe(BuildRecipe):
    strategy = BuildStrategy.CMAKE_GIT

    def steps(self, package: str) -> Steps:
        url = CMAKE_SOURCES.get(package)

        def acquire(ctx: BuildContext) -> None:
            if url is None:
                raise ctx.fail("no git source known for this package")
            clone(url, recursive=True)(ctx)

        def build(ctx: BuildContext) -> None:
            ctx.run(
                ["cmake", "-B", "build", "-G", "Ninja", "-DCMAKE_BUILD_TYPE=Release"],
                cwd=ctx.source,
            )
            ctx.run(["cmake", "--build", "build"], cwd=ctx.source)

        return [
            (BuildStepKind.ACQUIRE, acquire),
            (BuildStepKind.PREREQUISITES, install_build_dependencies),
            (BuildStepKind.BUILD, build),
            (BuildStepKind.INSTALL, lambda ctx: ctx.run(
                ["cmake", "--install", "build"], privileged=True, cwd=ctx.source,
            )),
        ]


class InstallerScriptRecipe(BuildRecipe):
    """Vendor installer script: downloaded first, then run from a file."""

    strategy = BuildStrategy.INSTALLER_SCRIPT

    def steps(self, package: str) -> Steps:
        url = INSTALLER_SCRIPTS.get(package)

        def acquire(ctx: BuildContext) -> None:
            if url is None:
                raise ctx.fail("no installer script known for this package")
            download(url, "install.sh")(ctx)

        return [
            (BuildStepKind.ACQUIRE, acquire),
            (BuildStepKind.PREREQUISITES, install_build_dependencies),
            (BuildStepKind.INSTALL, lambda ctx: ctx.run(
                ["bash", str(ctx.workspace / "install.sh")], privileged=True, cwd=ctx.workspace,
            )),
        ]


class ShellConfigRecipe(BuildRecipe):
    """The shell itself, where no package exists: a checkout in the config dir."""

    strategy = BuildStrategy.SHELL_CONFIG

    def steps(self, package: str) -> Steps:
        def acquire(ctx: BuildContext) -> None:
            target = ctx.paths.shell_config_dir
            if target.exists():
                logger.info("%s already present at %s", ctx.package, target)
                return
            target.parent.mkdir(parents=True, exist_ok=True)
            ctx.run(["git", "clone", ctx.paths.shell_config_repo, str(target)])

        return [(BuildStepKind.ACQUIRE, acquire)]


def default_recipes() -> Mapping[BuildStrategy, BuildRecipe]:
    """One recipe instance per build strategy."""
    recipes: list[BuildRecipe] = [
        AURRecipe(),
        DgopRecipe(),
        GrimblastRecipe(),
        MaterialSymbolsFontRecipe(),
        InterFontRecipe(),
        GoInstallRecipe(),
        CargoGitRecipe(),
        CMakeGitRecipe(),
        InstallerScriptRecipe(),
        ShellConfigRecipe(),
    ]
    return MappingProxyType({r.strategy: r for r in recipes})
