"""Arch Linux family (pacman + AUR)."""

from __future__ import annotations

from provisioner.core.distros.base import DistroStrategy, Prerequisite
from provisioner.core.engine.command_runner import Command
from provisioner.core.models.dependency import PackageVariant, Selection, WindowManager
from provisioner.core.models.package import BuildStrategy, PackageMapping

system = PackageMapping.system
aur = PackageMapping.extra


class ArchDistro(DistroStrategy):
    id = "arch"
    aliases = ("cachyos", "endeavouros", "manjaro")
    package_manager = "pacman"
    extra_build = BuildStrategy.AUR

    def _mappings(self, selection: Selection) -> dict[str, PackageMapping]:
        variant = selection.variant_for

        table = {
            "dms (DankMaterialShell)": aur("dms-shell-git"),
            "git": system("git"),
            "quickshell": aur("quickshell-git" if variant("quickshell") == PackageVariant.GIT else "quickshell"),
            "matugen": aur("matugen-bin"),
            "dgop": aur("dgop"),
            "cliphist": system("cliphist"),
            "wl-clipboard": system("wl-clipboard"),
            "xdg-desktop-portal-gtk": system("xdg-desktop-portal-gtk"),
            "mate-polkit": system("mate-polkit"),
            "font-material-symbols": aur("material-symbols-git"),
            "font-firacode": system("ttf-fira-code"),
            "font-inter": system("inter-font"),
        }

        terminal = selection.terminal
        table[terminal.value] = system(terminal.value)

        if selection.window_manager == WindowManager.HYPRLAND:
            hyprland = (
                aur("hyprland-git") if variant("hyprland") == PackageVariant.GIT else system("hyprland")
            )
            table.update({
                "hyprland": hyprland,
                "hyprctl": hyprland,
                "grim": system("grim"),
                "slurp": system("slurp"),
                "hyprpicker": system("hyprpicker"),
                "grimblast": PackageMapping.manual("grimblast", BuildStrategy.GRIMBLAST),
                "jq": system("jq"),
            })
        else:
            table.update({
                "niri": aur("niri-git") if variant("niri") == PackageVariant.GIT else system("niri"),
                "xwayland-satellite": system("xwayland-satellite"),
            })
        return table

    def prerequisites(self) -> list[Prerequisite]:
        return [
            Prerequisite(
                name="base-devel",
                check=Command(["pacman", "-Qq", "base-devel"]),
                install=[Command(
                    ["pacman", "-S", "--needed", "--noconfirm", "base-devel"], privileged=True,
                )],
            ),
        ]

    def system_install(self, packages: list[str]) -> list[Command]:
        if not packages:
            return []
        return [Command(["pacman", "-S", "--needed", "--noconfirm", *packages], privileged=True)]

    def is_installed(self, package: str) -> Command:
        return Command(["pacman", "-Q", package])

