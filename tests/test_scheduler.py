"""
Tests for the phase scheduler — phase order, progress, failure handling.
"""

import threading

import pytest

from doubles import EventLog, RecordingRunner, make_deps

from provisioner.core.credential import SudoCredential
from provisioner.core.distros import ArchDistro, FedoraDistro
from provisioner.core.engine import LogWindow
from provisioner.core.errors import (
    CommandFailure,
    InstallCancelled,
    ManualBuildError,
    PhaseError,
    UnsupportedDistributionError,
)
from provisioner.core.models import (
    PHASE_RANGES,
    BuildStrategy,
    Dependency,
    InstallerSettings,
    InstallPhase,
    ProgressEvent,
    Selection,
)
from provisioner.core.observability.logging_config import get_redactor
from provisioner.core.services.build_recipes import BuildRecipe, BuildStepKind
from provisioner.core.services.configuration import ShellConfigurator
from provisioner.core.services.manual_build import ManualBuildExecutor
from provisioner.core.services.scheduler import (
    InstallReport,
    InstallStream,
    PhaseScheduler,
    ProgressSink,
    run_install,
)


class EchoRecipe(BuildRecipe):
    """Single-step recipe: one recorded command per package."""

    def __init__(self, strategy: BuildStrategy):
        self.strategy = strategy

    def steps(self, package):
        return [(BuildStepKind.BUILD, lambda ctx: ctx.run(["build-it", ctx.package]))]


def recipes(*strategies):
    return {s: EchoRecipe(s) for s in strategies}


@pytest.fixture
def settings(tmp_path):
    return InstallerSettings(
        build_root=tmp_path / "builds",
        shell_config_dir=tmp_path / "config" / "dms",
    )


def make_scheduler(distro, runner, settings, strategies=(BuildStrategy.DGOP,)):
    executor = ManualBuildExecutor(runner, distro, settings.build_root, recipes=recipes(*strategies))
    configurator = ShellConfigurator(runner, settings.shell_config_repo, settings.shell_config_dir)
    return PhaseScheduler(distro, runner, settings, executor=executor, configurator=configurator)


FEDORA_DEPS = ("git", "jq", "quickshell", "hyprland", "dgop")


# ── Full runs ───────────────────────────────────────────────────


class TestFedoraRun:
    def test_phases_in_order(self, settings, events):
        runner = RecordingRunner()
        report = make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps(*FEDORA_DEPS), Selection(distro="fedora"), emit=events,
        )
        assert report.ok
        assert report.status == "ok"
        assert events.phases == list(InstallPhase)
        assert report.completed_phases == list(InstallPhase)

    def test_commands_issued(self, settings, events):
        runner = RecordingRunner()
        make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps(*FEDORA_DEPS), Selection(distro="fedora"), emit=events,
        )
        assert runner.displays == [
            "sudo dnf install -y dnf-plugins-core",
            "sudo dnf copr enable -y errornointernet/quickshell",
            "sudo dnf copr enable -y solopasha/hyprland",
            "sudo dnf install -y git jq",
            "sudo dnf install -y quickshell hyprland",
            "build-it dgop",
            f"git clone {settings.shell_config_repo} {settings.shell_config_dir}",
        ]

    def test_progress_monotonic_and_complete(self, settings, events):
        make_scheduler(FedoraDistro(), RecordingRunner(), settings).run(
            make_deps(*FEDORA_DEPS), Selection(distro="fedora"), emit=events,
        )
        assert events.progress == sorted(events.progress)
        final = events[-1]
        assert final.progress == 1.0
        assert final.is_complete
        assert sum(e.is_complete for e in events) == 1

    def test_events_within_phase_ranges(self, settings, events):
        make_scheduler(FedoraDistro(), RecordingRunner(), settings).run(
            make_deps(*FEDORA_DEPS), Selection(distro="fedora"), emit=events,
        )
        for event in events:
            start, end = PHASE_RANGES[event.phase]
            assert start <= event.progress <= end

    def test_prerequisite_already_installed(self, settings, events):
        runner = RecordingRunner(installed={"dnf-plugins-core"})
        make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps("git"), Selection(distro="fedora"), emit=events,
        )
        assert "sudo dnf install -y dnf-plugins-core" not in runner.displays
        assert "dnf-plugins-core is already installed" in events.lines

    def test_empty_phases_emit_nothing(self, settings, events):
        report = make_scheduler(FedoraDistro(), RecordingRunner(), settings).run(
            make_deps("git"), Selection(distro="fedora"), emit=events,
        )
        assert events.phases == [
            InstallPhase.PREREQUISITES,
            InstallPhase.SYSTEM_PACKAGES,
            InstallPhase.CONFIGURATION,
            InstallPhase.COMPLETE,
        ]
        assert report.enabled_repositories == []
        assert report.built == []

    def test_installed_dependencies_skipped(self, settings, events):
        runner = RecordingRunner()
        report = make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps("git", "jq", installed=("git",)), Selection(distro="fedora"), emit=events,
        )
        assert "sudo dnf install -y jq" in runner.displays
        assert report.plan.skipped == ["git"]

    def test_report_records_results(self, settings, events):
        report = make_scheduler(FedoraDistro(), RecordingRunner(), settings).run(
            make_deps(*FEDORA_DEPS), Selection(distro="fedora"), emit=events,
        )
        assert report.enabled_repositories == ["errornointernet/quickshell", "solopasha/hyprland"]
        assert report.built == ["dgop"]
        assert report.configured
        data = report.to_dict()
        assert data["status"] == "ok"
        assert data["completed_phases"][-1] == "complete"
        assert data["failed_phase"] is None

    def test_works_without_emit(self, settings):
        report = make_scheduler(FedoraDistro(), RecordingRunner(), settings).run(
            make_deps("git"), Selection(distro="fedora"),
        )
        assert report.ok


class TestWarnings:
    def test_unmapped_dependency_does_not_abort(self, settings, events):
        report = make_scheduler(FedoraDistro(), RecordingRunner(), settings).run(
            make_deps("no-such-thing", "git"), Selection(distro="fedora"), emit=events,
        )
        assert report.ok
        assert "Warning: No package mapping for no-such-thing on fedora" in events.lines
        assert [w.name for w in report.plan.unresolved] == ["no-such-thing"]


class TestConfiguration:
    def test_existing_config_left_alone(self, settings, events):
        settings.shell_config_dir.mkdir(parents=True)
        runner = RecordingRunner()
        report = make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps("git"), Selection(distro="fedora"), emit=events,
        )
        assert not report.configured
        assert not any(d.startswith("git clone") for d in runner.displays)

    def test_skip_configuration(self, settings, events):
        settings = settings.model_copy(update={"skip_configuration": True})
        runner = RecordingRunner()
        report = make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps("git"), Selection(distro="fedora"), emit=events,
        )
        assert report.ok
        assert not report.configured
        assert not any(d.startswith("git clone") for d in runner.displays)


# ── Failures ────────────────────────────────────────────────────


class TestFailure:
    def test_failure_wrapped_with_phase(self, settings, events):
        runner = RecordingRunner()
        runner.set_failure("dnf install -y git")
        report = make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps(*FEDORA_DEPS), Selection(distro="fedora"), emit=events,
        )
        assert not report.ok
        assert report.status == "failed"
        assert report.failed_phase == InstallPhase.SYSTEM_PACKAGES
        assert isinstance(report.error, PhaseError)
        assert isinstance(report.error.__cause__, CommandFailure)

    def test_later_phases_do_not_run(self, settings, events):
        runner = RecordingRunner()
        runner.set_failure("dnf install -y git")
        report = make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps(*FEDORA_DEPS), Selection(distro="fedora"), emit=events,
        )
        assert "build-it dgop" not in runner.displays
        assert InstallPhase.EXTRA_REPO_PACKAGES not in events.phases
        assert InstallPhase.COMPLETE not in report.completed_phases
        assert not any(e.is_complete for e in events)

    def test_failure_event_reaches_caller(self, settings, events):
        runner = RecordingRunner()
        runner.set_failure("dnf install -y git")
        make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps(*FEDORA_DEPS), Selection(distro="fedora"), emit=events,
        )
        failures = [e for e in events if e.error is not None]
        assert len(failures) == 1
        assert isinstance(failures[0].error, CommandFailure)

    def test_raise_for_error(self, settings):
        runner = RecordingRunner()
        runner.set_failure("copr enable")
        report = make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps("quickshell"), Selection(distro="fedora"),
        )
        assert report.failed_phase == InstallPhase.REPOSITORY_ENABLE
        assert report.error.package == "errornointernet/quickshell"
        with pytest.raises(PhaseError):
            report.raise_for_error()

    def test_manual_build_failure_names_package(self, settings):
        runner = RecordingRunner()
        runner.set_failure("build-it dgop")
        report = make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps("dgop"), Selection(distro="fedora"),
        )
        assert report.failed_phase == InstallPhase.MANUAL_BUILDS
        assert report.error.package == "dgop"
        assert isinstance(report.error.__cause__, ManualBuildError)

    def test_aur_clone_failure_names_package_and_step(self, settings):
        runner = RecordingRunner(installed={"base-devel"})
        runner.set_failure("git clone https://aur.archlinux.org/dgop.git")
        configurator = ShellConfigurator(runner, settings.shell_config_repo, settings.shell_config_dir)
        scheduler = PhaseScheduler(ArchDistro(), runner, settings, configurator=configurator)
        report = scheduler.run(make_deps("dgop"), Selection(distro="arch"))
        assert report.failed_phase == InstallPhase.EXTRA_REPO_PACKAGES
        assert report.error.package == "dgop"
        assert isinstance(report.error.__cause__, ManualBuildError)
        assert report.error.__cause__.step == "acquire"
        assert list(settings.build_root.iterdir()) == []

    def test_log_window_kept(self, settings):
        runner = RecordingRunner()
        runner.set_failure("dnf install -y git")
        report = make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps("git", "quickshell"), Selection(distro="fedora"),
        )
        assert report.log_lines == ["ran dnf", "ran dnf"]

    def test_cancelled(self, settings):
        runner = RecordingRunner()
        runner.cancel()
        report = make_scheduler(FedoraDistro(), runner, settings).run(
            make_deps("git"), Selection(distro="fedora"),
        )
        assert report.cancelled
        assert report.status == "cancelled"
        assert report.failed_phase == InstallPhase.PREREQUISITES


# ── Arch ────────────────────────────────────────────────────────


class TestArchRun:
    def test_aur_packages_built_in_extra_phase(self, settings, events):
        runner = RecordingRunner(installed={"base-devel"})
        scheduler = make_scheduler(ArchDistro(), runner, settings, strategies=(BuildStrategy.AUR,))
        report = scheduler.run(
            make_deps("git", "dms (DankMaterialShell)", "quickshell"),
            Selection(distro="arch"),
            emit=events,
        )
        assert report.ok
        assert InstallPhase.REPOSITORY_ENABLE not in events.phases
        assert runner.displays == [
            "sudo pacman -S --needed --noconfirm git",
            "build-it quickshell",
            "build-it dms-shell-git",
            f"git clone {settings.shell_config_repo} {settings.shell_config_dir}",
        ]
        assert report.built == ["quickshell", "dms-shell-git"]


class TestPlan:
    def test_plan_runs_nothing(self, settings):
        runner = RecordingRunner()
        plan = make_scheduler(FedoraDistro(), runner, settings).plan(
            make_deps(*FEDORA_DEPS), Selection(distro="fedora"),
        )
        assert plan.system == ["git", "jq"]
        assert plan.manual_names == ["dgop"]
        assert runner.call_log == []

    def test_dependency_variant_applies(self, settings):
        plan = make_scheduler(ArchDistro(), RecordingRunner(), settings).plan(
            [Dependency(name="quickshell", variant="git")], Selection(distro="arch"),
        )
        assert plan.extra_names == ["quickshell-git"]


# ── Sink and stream ─────────────────────────────────────────────


class TestProgressSink:
    def test_clamps_backward_progress(self, events):
        sink = ProgressSink(events, LogWindow(5))
        sink(ProgressEvent(phase=InstallPhase.SYSTEM_PACKAGES, progress=0.5))
        sink(ProgressEvent(phase=InstallPhase.SYSTEM_PACKAGES, progress=0.4))
        assert events.progress == [0.5, 0.5]

    def test_failure_event_unchanged(self, events):
        sink = ProgressSink(events, LogWindow(5))
        sink(ProgressEvent(phase=InstallPhase.SYSTEM_PACKAGES, progress=0.5))
        err = CommandFailure("x", 1)
        sink(ProgressEvent(phase=InstallPhase.SYSTEM_PACKAGES, progress=0.35, log_output="last", error=err))
        assert events[-1].progress == 0.35
        assert sink.window.lines == []

    def test_window_bounded(self):
        sink = ProgressSink(None, LogWindow(2))
        for line in ("a", "b", "c"):
            sink(ProgressEvent(phase=InstallPhase.SYSTEM_PACKAGES, progress=0.4, log_output=line))
        assert sink.window.lines == ["b", "c"]


class TestInstallStream:
    def test_events_and_report(self):
        def target(emit, cancel_event):
            emit(ProgressEvent(phase=InstallPhase.PREREQUISITES, progress=0.05))
            emit(ProgressEvent(phase=InstallPhase.COMPLETE, progress=1.0, is_complete=True))
            return InstallReport(operation_id="abc")

        stream = InstallStream(target)
        received = list(stream)
        assert [e.progress for e in received] == [0.05, 1.0]
        assert stream.report.operation_id == "abc"

    def test_worker_error_reraised(self):
        def target(emit, cancel_event):
            raise UnsupportedDistributionError("gentoo")

        with pytest.raises(UnsupportedDistributionError):
            list(InstallStream(target))

    def test_early_exit_cancels_worker(self):
        seen_cancel = threading.Event()

        def target(emit, cancel_event):
            while not cancel_event.is_set():
                emit(ProgressEvent(phase=InstallPhase.SYSTEM_PACKAGES, progress=0.4))
            seen_cancel.set()
            return InstallReport()

        stream = InstallStream(target)
        for _event in stream:
            break
        assert seen_cancel.is_set()

    def test_cancel_method(self):
        started = threading.Event()

        def target(emit, cancel_event):
            started.set()
            cancel_event.wait(5)
            return InstallReport(operation_id="cancelled" if cancel_event.is_set() else "timeout")

        stream = InstallStream(target)
        threading.Timer(0.1, stream.cancel).start()
        list(stream)
        assert started.is_set()
        assert stream.report.operation_id == "cancelled"


class TestRunInstall:
    def test_unsupported_distro(self):
        with pytest.raises(UnsupportedDistributionError):
            run_install(make_deps("git"), Selection(distro="gentoo"))

    def test_credential_registered_for_redaction(self, monkeypatch, settings):
        monkeypatch.setattr(SudoCredential, "running_as_root", staticmethod(lambda: False))
        cancel = threading.Event()
        cancel.set()
        report = run_install(
            make_deps("git"),
            Selection(distro="fedora"),
            SudoCredential("s3cret-pass"),
            settings=settings,
            cancel_event=cancel,
        )
        assert report.cancelled
        assert get_redactor().scrub("pw=s3cret-pass") == "pw=***REDACTED***"
        assert isinstance(report.error.__cause__, InstallCancelled)
