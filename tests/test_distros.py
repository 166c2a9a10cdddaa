"""
Tests for distro strategies and the registry.
"""

import pytest

from provisioner.core.distros import (
    ArchDistro,
    DistroRegistry,
    FedoraDistro,
    OpenSUSEDistro,
    UbuntuDistro,
    default_registry,
)
from provisioner.core.errors import UnsupportedDistributionError
from provisioner.core.models import BuildStrategy, RepositoryType, Selection


class TestRegistry:
    def test_get_by_id(self):
        assert isinstance(default_registry().get("fedora"), FedoraDistro)

    @pytest.mark.parametrize("alias,cls", [
        ("cachyos", ArchDistro),
        ("endeavouros", ArchDistro),
        ("nobara", FedoraDistro),
        ("debian", UbuntuDistro),
        ("opensuse-leap", OpenSUSEDistro),
    ])
    def test_aliases(self, alias, cls):
        strategy = default_registry().get(alias)
        assert isinstance(strategy, cls)
        assert strategy.distro_id == alias

    def test_case_insensitive(self):
        assert "Fedora" in default_registry()

    def test_unknown_raises(self):
        with pytest.raises(UnsupportedDistributionError, match="gentoo"):
            default_registry().get("gentoo")

    def test_registries_are_independent(self):
        empty = DistroRegistry()
        assert "arch" not in empty
        assert "arch" in default_registry()

    def test_entries(self):
        entries = default_registry().entries()
        ids = [e["id"] for e in entries]
        assert ids == sorted(ids)
        arch = next(e for e in entries if e["id"] == "manjaro")
        assert arch["family"] == "arch"
        assert arch["package_manager"] == "pacman"


class TestArch:
    def test_quickshell_variant(self):
        arch = ArchDistro()
        stable = arch.mapping_table(Selection(distro="arch"))
        git = arch.mapping_table(Selection(distro="arch", variants={"quickshell": "git"}))
        assert stable["quickshell"].name == "quickshell"
        assert git["quickshell"].name == "quickshell-git"
        assert git["quickshell"].repository == RepositoryType.EXTRA

    def test_hyprland_git_goes_to_aur(self):
        table = ArchDistro().mapping_table(Selection(distro="arch", variants={"hyprland": "git"}))
        assert table["hyprland"].name == "hyprland-git"
        assert table["hyprland"].repository == RepositoryType.EXTRA
        assert table["hyprctl"] == table["hyprland"]

    def test_niri_table(self):
        table = ArchDistro().mapping_table(Selection(distro="arch", window_manager="niri"))
        assert "niri" in table
        assert "xwayland-satellite" in table
        assert "hyprland" not in table

    def test_selected_terminal_only(self):
        table = ArchDistro().mapping_table(Selection(distro="arch", terminal="kitty"))
        assert "kitty" in table
        assert "ghostty" not in table

    def test_table_is_immutable(self):
        table = ArchDistro().mapping_table(Selection(distro="arch"))
        with pytest.raises(TypeError):
            table["git"] = None

    def test_extras_built_via_aur(self):
        assert ArchDistro.extra_build == BuildStrategy.AUR

    def test_system_install_is_privileged_argv(self):
        (cmd,) = ArchDistro().system_install(["git", "jq"])
        assert cmd.argv == ["pacman", "-S", "--needed", "--noconfirm", "git", "jq"]
        assert cmd.privileged

    def test_empty_install_is_no_commands(self):
        assert ArchDistro().system_install([]) == []

    def test_prerequisite_checks_base_devel(self):
        (prereq,) = ArchDistro().prerequisites()
        assert prereq.check.argv == ["pacman", "-Qq", "base-devel"]
        assert not prereq.check.privileged


class TestFedora:
    def test_copr_slugs(self):
        table = FedoraDistro().mapping_table(Selection(distro="fedora"))
        assert table["quickshell"].repo == "errornointernet/quickshell"
        assert table["matugen"].repo == "heus-sueh/packages"
        assert table["ghostty"].repo == "alternateved/ghostty"

    def test_kitty_is_system(self):
        table = FedoraDistro().mapping_table(Selection(distro="fedora", terminal="kitty"))
        assert table["kitty"].repository == RepositoryType.SYSTEM

    def test_niri_copr(self):
        table = FedoraDistro().mapping_table(Selection(distro="fedora", window_manager="niri"))
        assert table["niri"].repo == "yalter/niri-git"

    def test_enable_repository(self):
        cmd = FedoraDistro().enable_repository("yalter/niri-git")
        assert cmd.argv == ["dnf", "copr", "enable", "-y", "yalter/niri-git"]
        assert cmd.privileged

    def test_manual_fonts(self):
        table = FedoraDistro().mapping_table(Selection(distro="fedora"))
        assert table["font-inter"].build == BuildStrategy.INTER_FONT


class TestUbuntu:
    def test_ghostty_uses_installer_script(self):
        table = UbuntuDistro().mapping_table(Selection(distro="ubuntu"))
        assert table["ghostty"].build == BuildStrategy.INSTALLER_SCRIPT

    def test_repository_hooks(self):
        ubuntu = UbuntuDistro()
        assert ubuntu.repository_pre_enable()[0].argv[-1] == "software-properties-common"
        assert ubuntu.repository_refresh()[0].argv == ["apt", "update"]
        assert ubuntu.enable_repository("ppa:foo/bar").argv == ["add-apt-repository", "-y", "ppa:foo/bar"]

    def test_build_dependencies_deduplicated(self):
        deps = UbuntuDistro().build_dependencies(["niri", "ghostty", "matugen"])
        assert deps.count("curl") == 1
        assert deps[0] == "curl"
        assert "libgtk-4-dev" in deps

    def test_unknown_package_has_no_build_dependencies(self):
        assert UbuntuDistro().build_dependencies(["nothing"]) == []


class TestOpenSUSE:
    def test_prerequisites_check_each_tool(self):
        prereqs = OpenSUSEDistro().prerequisites()
        assert [p.name for p in prereqs] == ["make", "unzip", "gcc", "gcc-c++", "go"]
        assert all(p.check.argv[:2] == ["rpm", "-q"] for p in prereqs)

    def test_shell_is_manual(self):
        table = OpenSUSEDistro().mapping_table(Selection(distro="opensuse-tumbleweed"))
        assert table["dms (DankMaterialShell)"].build == BuildStrategy.SHELL_CONFIG
        assert table["wl-clipboard"].name == "wl-clipboard-rs"

    def test_no_repositories_to_enable(self):
        assert OpenSUSEDistro().enable_repository("anything") is None
