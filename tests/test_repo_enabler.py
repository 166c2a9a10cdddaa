"""
Tests for the repository enabler.
"""

import pytest

from doubles import EventLog, RecordingRunner

from provisioner.core.distros import ArchDistro, FedoraDistro, UbuntuDistro
from provisioner.core.engine import CommandRunner
from provisioner.core.errors import CommandFailure, InstallCancelled, RepositoryEnableFailure
from provisioner.core.models import InstallPhase, PackageMapping
from provisioner.core.services.repo_enabler import (
    NIRI_COPR_REPO_FILE,
    RepositoryEnabler,
    append_line,
)

PHASE = InstallPhase.REPOSITORY_ENABLE
copr = PackageMapping.extra


def fedora_entries():
    return [
        copr("quickshell", "errornointernet/quickshell"),
        copr("hyprland", "solopasha/hyprland"),
        copr("hyprpicker", "solopasha/hyprland"),
        copr("matugen", "heus-sueh/packages"),
    ]


class TestFedora:
    def test_each_identity_enabled_once_in_order(self, runner, events):
        enabled = RepositoryEnabler(runner, FedoraDistro()).enable(fedora_entries(), PHASE, 0.15, 0.27, events)
        assert enabled == ["errornointernet/quickshell", "solopasha/hyprland", "heus-sueh/packages"]
        assert runner.displays == [
            "sudo dnf copr enable -y errornointernet/quickshell",
            "sudo dnf copr enable -y solopasha/hyprland",
            "sudo dnf copr enable -y heus-sueh/packages",
        ]

    def test_already_enabled_not_repeated(self, runner, events):
        enabler = RepositoryEnabler(runner, FedoraDistro())
        enabler.enable(fedora_entries(), PHASE, 0.15, 0.27, events)
        runner.call_log.clear()
        assert enabler.enable(fedora_entries(), PHASE, 0.15, 0.27, events) == []
        assert runner.call_log == []
        assert "solopasha/hyprland" in enabler.enabled

    def test_niri_gets_priority_after_enable(self, runner, events):
        RepositoryEnabler(runner, FedoraDistro()).enable(
            [copr("niri", "yalter/niri-git")], PHASE, 0.15, 0.27, events,
        )
        enable, priority = runner.call_log
        assert enable.argv[-1] == "yalter/niri-git"
        assert priority.privileged
        assert priority.argv[-2:] == [NIRI_COPR_REPO_FILE, "priority=1"]

    def test_progress_stays_in_range(self, runner, events):
        RepositoryEnabler(runner, FedoraDistro()).enable(fedora_entries(), PHASE, 0.15, 0.27, events)
        assert all(0.15 <= p <= 0.27 for p in events.progress)
        assert events.progress == sorted(events.progress)
        assert events.progress[-1] == pytest.approx(0.27)

    def test_failure_names_identity(self, runner, events):
        runner.set_failure("heus-sueh/packages")
        with pytest.raises(RepositoryEnableFailure) as exc:
            RepositoryEnabler(runner, FedoraDistro()).enable(fedora_entries(), PHASE, 0.15, 0.27, events)
        assert exc.value.identity == "heus-sueh/packages"
        assert isinstance(exc.value.__cause__, CommandFailure)

    def test_failed_identity_not_marked_enabled(self, runner, events):
        runner.set_failure("heus-sueh/packages")
        enabler = RepositoryEnabler(runner, FedoraDistro())
        with pytest.raises(RepositoryEnableFailure):
            enabler.enable(fedora_entries(), PHASE, 0.15, 0.27, events)
        assert "heus-sueh/packages" not in enabler.enabled
        assert "errornointernet/quickshell" in enabler.enabled

    def test_cancel_not_wrapped(self, runner, events):
        runner.set_failure("solopasha", InstallCancelled("dnf copr enable"))
        with pytest.raises(InstallCancelled):
            RepositoryEnabler(runner, FedoraDistro()).enable(fedora_entries(), PHASE, 0.15, 0.27, events)


class TestUbuntu:
    def test_pre_step_and_refresh_run_once(self, runner, events):
        entries = [PackageMapping.extra("foo", "ppa:a/foo"), PackageMapping.extra("bar", "ppa:b/bar")]
        RepositoryEnabler(runner, UbuntuDistro()).enable(entries, PHASE, 0.15, 0.27, events)
        assert runner.displays == [
            "sudo apt install -y software-properties-common",
            "sudo add-apt-repository -y ppa:a/foo",
            "sudo add-apt-repository -y ppa:b/bar",
            "sudo apt update",
        ]

    def test_nothing_pending_runs_nothing(self, runner, events):
        assert RepositoryEnabler(runner, UbuntuDistro()).enable([], PHASE, 0.15, 0.27, events) == []
        assert runner.call_log == []


class TestPending:
    def test_entries_without_identity_skipped(self):
        enabler = RepositoryEnabler(RecordingRunner(), FedoraDistro())
        assert enabler.pending([PackageMapping.extra("x")]) == []

    def test_distro_without_repositories(self):
        enabler = RepositoryEnabler(RecordingRunner(), ArchDistro())
        assert enabler.pending([PackageMapping.extra("x", "whatever")]) == []


class TestAppendLine:
    def test_values_passed_as_arguments(self):
        cmd = append_line("/etc/x.repo", "a; rm -rf /")
        script = cmd.argv[2]
        assert "rm" not in script
        assert cmd.argv[-1] == "a; rm -rf /"
        assert cmd.display.startswith("append ")

    def test_runs_through_shell(self, tmp_path):
        events = EventLog()
        target = tmp_path / "x.repo"
        target.write_text("[copr]\n")
        cmd = append_line(str(target), "priority=1")
        cmd.privileged = False
        CommandRunner().run(cmd, PHASE, 0.0, 1.0, events)
        assert target.read_text() == "[copr]\npriority=1\n"
