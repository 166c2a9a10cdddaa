"""Fedora family (dnf + COPR)."""

from __future__ import annotations

from types import MappingProxyType

from provisioner.core.distros.base import DistroStrategy, Prerequisite
from provisioner.core.engine.command_runner import Command
from provisioner.core.models.dependency import Selection, Terminal, WindowManager
from provisioner.core.models.package import BuildStrategy, PackageMapping

system = PackageMapping.system
copr = PackageMapping.extra
manual = PackageMapping.manual

HYPRLAND_COPR = "solopasha/hyprland"


class FedoraDistro(DistroStrategy):
    id = "fedora"
    aliases = ("nobara",)
    package_manager = "dnf"
    toolchain_packages = MappingProxyType({"go": "golang"})

    build_requirements = MappingProxyType({
        "dgop": ("golang", "make"),
        "grimblast": ("make",),
    })

    def _mappings(self, selection: Selection) -> dict[str, PackageMapping]:
        table = {
            "git": system("git"),
            "wl-clipboard": system("wl-clipboard"),
            "xdg-desktop-portal-gtk": system("xdg-desktop-portal-gtk"),
            "mate-polkit": system("mate-polkit"),
            "font-firacode": system("fira-code-fonts"),
            "quickshell": copr("quickshell", "errornointernet/quickshell"),
            "matugen": copr("matugen", "heus-sueh/packages"),
            "cliphist": copr("cliphist", "alternateved/cliphist"),
            "dgop": manual("dgop", BuildStrategy.DGOP),
            "font-material-symbols": manual("font-material-symbols", BuildStrategy.MATERIAL_SYMBOLS_FONT),
            "font-inter": manual("font-inter", BuildStrategy.INTER_FONT),
        }

        if selection.terminal == Terminal.GHOSTTY:
            table["ghostty"] = copr("ghostty", "alternateved/ghostty")
        else:
            table[selection.terminal.value] = system(selection.terminal.value)

        if selection.window_manager == WindowManager.HYPRLAND:
            table.update({
                "hyprland": copr("hyprland", HYPRLAND_COPR),
                "hyprctl": copr("hyprland", HYPRLAND_COPR),
                "hyprpicker": copr("hyprpicker", HYPRLAND_COPR),
                "grim": system("grim"),
                "slurp": system("slurp"),
                "grimblast": manual("grimblast", BuildStrategy.GRIMBLAST),
                "jq": system("jq"),
            })
        else:
            table["niri"] = copr("niri", "yalter/niri-git")
        return table

    def prerequisites(self) -> list[Prerequisite]:
        return [
            Prerequisite(
                name="dnf-plugins-core",
                check=Command(["rpm", "-q", "dnf-plugins-core"]),
                install=[Command(["dnf", "install", "-y", "dnf-plugins-core"], privileged=True)],
            ),
        ]

    def system_install(self, packages: list[str]) -> list[Command]:
        if not packages:
            return []
        return [Command(["dnf", "install", "-y", *packages], privileged=True)]

    def enable_repository(self, identity: str) -> Command:
        return Command(["dnf", "copr", "enable", "-y", identity], privileged=True)

    def is_installed(self, package: str) -> Command:
        return Command(["rpm", "-q", package])
