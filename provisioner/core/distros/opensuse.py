"""openSUSE family (zypper)."""

from __future__ import annotations

from types import MappingProxyType

from provisioner.core.distros.base import DistroStrategy, Prerequisite
from provisioner.core.engine.command_runner import Command
from provisioner.core.models.dependency import Selection, WindowManager
from provisioner.core.models.package import BuildStrategy, PackageMapping

system = PackageMapping.system
manual = PackageMapping.manual

_BUILD_PREREQUISITES = ("make", "unzip", "gcc", "gcc-c++", "go")


class OpenSUSEDistro(DistroStrategy):
    id = "opensuse-tumbleweed"
    aliases = ("opensuse-leap", "opensuse")
    package_manager = "zypper"

    build_requirements = MappingProxyType({
        "quickshell": (
            "cmake", "ninja", "qt6-base-devel", "qt6-declarative-devel",
            "qt6-wayland-devel", "qt6-svg-devel",
        ),
        "matugen": ("cargo",),
    })

    def _mappings(self, selection: Selection) -> dict[str, PackageMapping]:
        table = {
            "git": system("git"),
            "wl-clipboard": system("wl-clipboard-rs"),
            "xdg-desktop-portal-gtk": system("xdg-desktop-portal-gtk"),
            "mate-polkit": system("mate-polkit"),
            "font-firacode": system("fira-code-fonts"),
            "cliphist": system("cliphist"),
            "dms (DankMaterialShell)": manual("dms", BuildStrategy.SHELL_CONFIG),
            "dgop": manual("dgop", BuildStrategy.DGOP),
            "font-material-symbols": manual("font-material-symbols", BuildStrategy.MATERIAL_SYMBOLS_FONT),
            "font-inter": manual("font-inter", BuildStrategy.INTER_FONT),
            "quickshell": manual("quickshell", BuildStrategy.CMAKE_GIT),
            "matugen": manual("matugen", BuildStrategy.CARGO_GIT),
        }

        table[selection.terminal.value] = system(selection.terminal.value)

        if selection.window_manager == WindowManager.HYPRLAND:
            table.update({
                "hyprland": system("hyprland"),
                "hyprctl": system("hyprland"),
                "hyprpicker": system("hyprpicker"),
                "grim": system("grim"),
                "slurp": system("slurp"),
                "grimblast": manual("grimblast", BuildStrategy.GRIMBLAST),
                "jq": system("jq"),
            })
        else:
            table.update({
                "niri": system("niri"),
                "xwayland-satellite": system("xwayland-satellite"),
            })
        return table

    def prerequisites(self) -> list[Prerequisite]:
        return [
            Prerequisite(
                name=pkg,
                check=self.is_installed(pkg),
                install=self.system_install([pkg]),
            )
            for pkg in _BUILD_PREREQUISITES
        ]

    def system_install(self, packages: list[str]) -> list[Command]:
        if not packages:
            return []
        return [Command(["zypper", "install", "-y", *packages], privileged=True)]

    def is_installed(self, package: str) -> Command:
        return Command(["rpm", "-q", package])
