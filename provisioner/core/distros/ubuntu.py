"""Ubuntu / Debian family (apt + PPA).

Most of the desktop stack is missing from the archive, so a large share
of it is built from source here.
"""

from __future__ import annotations

from types import MappingProxyType

from provisioner.core.distros.base import DistroStrategy, Prerequisite
from provisioner.core.engine.command_runner import Command
from provisioner.core.models.dependency import Selection, Terminal, WindowManager
from provisioner.core.models.package import BuildStrategy, PackageMapping

system = PackageMapping.system
manual = PackageMapping.manual

_HYPRLAND_BUILD = (
    "meson", "libwayland-dev", "libxkbcommon-dev", "libegl1-mesa-dev",
    "libgles2-mesa-dev", "libdrm-dev", "libxcb-dri3-dev", "libxcb-present-dev",
    "libxcb-composite0-dev", "libxcb-ewmh-dev", "libxcb-icccm4-dev",
    "libxcb-res0-dev", "libxcb-util0-dev",
)


class UbuntuDistro(DistroStrategy):
    id = "ubuntu"
    aliases = ("debian", "pop")
    package_manager = "apt"
    toolchain_packages = MappingProxyType({"go": "golang-go"})

    build_requirements = MappingProxyType({
        "niri": (
            "curl", "libxkbcommon-dev", "libwayland-dev", "libudev-dev", "libinput-dev",
            "libdisplay-info-dev", "libpango1.0-dev", "libcairo-dev",
        ),
        "quickshell": ("qt6-base-dev", "qt6-declarative-dev", "qt6-wayland-dev", "libqt6svg6-dev"),
        "hyprland": _HYPRLAND_BUILD,
        "hyprpicker": _HYPRLAND_BUILD,
        "ghostty": ("curl", "libgtk-4-dev", "libadwaita-1-dev"),
        "matugen": ("curl",),
        "cliphist": ("golang-go",),
        "dgop": ("golang-go",),
    })

    def _mappings(self, selection: Selection) -> dict[str, PackageMapping]:
        table = {
            "git": system("git"),
            "wl-clipboard": system("wl-clipboard"),
            "xdg-desktop-portal-gtk": system("xdg-desktop-portal-gtk"),
            "mate-polkit": system("mate-polkit"),
            "font-firacode": system("fonts-firacode"),
            "font-inter": system("fonts-inter-variable"),
            "quickshell": manual("quickshell", BuildStrategy.CMAKE_GIT),
            "matugen": manual("matugen", BuildStrategy.CARGO_GIT),
            "dgop": manual("dgop", BuildStrategy.DGOP),
            "cliphist": manual("cliphist", BuildStrategy.GO_INSTALL),
            "font-material-symbols": manual("font-material-symbols", BuildStrategy.MATERIAL_SYMBOLS_FONT),
        }

        if selection.terminal == Terminal.GHOSTTY:
            table["ghostty"] = manual("ghostty", BuildStrategy.INSTALLER_SCRIPT)
        else:
            table[selection.terminal.value] = system(selection.terminal.value)

        if selection.window_manager == WindowManager.HYPRLAND:
            hyprland = manual("hyprland", BuildStrategy.CMAKE_GIT)
            table.update({
                "hyprland": hyprland,
                "hyprctl": hyprland,
                "hyprpicker": manual("hyprpicker", BuildStrategy.CMAKE_GIT),
                "grim": system("grim"),
                "slurp": system("slurp"),
                "grimblast": manual("grimblast", BuildStrategy.GRIMBLAST),
                "jq": system("jq"),
            })
        else:
            table["niri"] = manual("niri", BuildStrategy.CARGO_GIT)
        return table

    def prerequisites(self) -> list[Prerequisite]:
        return [
            Prerequisite(
                name="apt-update",
                check=None,
                install=[Command(["apt", "update"], privileged=True)],
            ),
            Prerequisite(
                name="build-essential",
                check=Command(["dpkg", "-s", "build-essential"]),
                install=[Command(["apt", "install", "-y", "build-essential"], privileged=True)],
            ),
            Prerequisite(
                name="build-tools",
                check=None,
                install=[Command(
                    ["apt", "install", "-y", "curl", "wget", "git", "cmake", "ninja-build", "pkg-config"],
                    privileged=True,
                )],
            ),
        ]

    def system_install(self, packages: list[str]) -> list[Command]:
        if not packages:
            return []
        return [Command(["apt", "install", "-y", *packages], privileged=True)]

    def enable_repository(self, identity: str) -> Command:
        return Command(["add-apt-repository", "-y", identity], privileged=True)

    def repository_pre_enable(self) -> list[Command]:
        return [Command(["apt", "install", "-y", "software-properties-common"], privileged=True)]

    def repository_refresh(self) -> list[Command]:
        return [Command(["apt", "update"], privileged=True)]

    def is_installed(self, package: str) -> Command:
        return Command(["dpkg", "-s", package])
