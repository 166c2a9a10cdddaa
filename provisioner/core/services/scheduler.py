"""
Phase scheduler — the installation state machine.

Flow:
    categorize → Prerequisites → RepositoryEnable → SystemPackages
    → ExtraRepoPackages → ManualBuilds → Configuration → Complete

Phases run strictly one after another. Empty phases are skipped and
emit nothing. The first failure aborts the run: it is wrapped in a
``PhaseError`` (phase + package context, cause chained) and returned
in the ``InstallReport``. There is no retry.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime

from provisioner.core.credential import SudoCredential
from provisioner.core.distros.base import DistroStrategy
from provisioner.core.distros.registry import DistroRegistry, default_registry
from provisioner.core.engine.channel import LogWindow, ProgressChannel
from provisioner.core.engine.command_runner import CommandRunner, EventSink
from provisioner.core.errors import (
    InstallCancelled,
    ManualBuildError,
    PhaseError,
    ProvisionError,
    RepositoryEnableFailure,
)
from provisioner.core.models.dependency import Dependency, Selection
from provisioner.core.models.progress import PHASE_RANGES, InstallPhase, ProgressEvent, interpolate
from provisioner.core.models.settings import InstallerSettings
from provisioner.core.observability.logging_config import register_secret
from provisioner.core.services.build_recipes import BuildPaths
from provisioner.core.services.categorizer import CategorizedPackages, categorize
from provisioner.core.services.configuration import ShellConfigurator
from provisioner.core.services.manual_build import ManualBuildExecutor
from provisioner.core.services.repo_enabler import RepositoryEnabler

logger = logging.getLogger(__name__)


@dataclass
class InstallReport:
    """Result of one installer run."""

    operation_id: str = ""
    distro: str = ""
    started_at: str = ""
    finished_at: str = ""
    plan: CategorizedPackages | None = None
    completed_phases: list[InstallPhase] = field(default_factory=list)
    enabled_repositories: list[str] = field(default_factory=list)
    built: list[str] = field(default_factory=list)
    configured: bool = False
    log_lines: list[str] = field(default_factory=list)
    error: PhaseError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def cancelled(self) -> bool:
        return self.error is not None and isinstance(self.error.__cause__, InstallCancelled)

    @property
    def failed_phase(self) -> InstallPhase | None:
        return self.error.phase if self.error else None

    @property
    def status(self) -> str:
        if self.error is None:
            return "ok"
        return "cancelled" if self.cancelled else "failed"

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict:
        return {
            "operation_id": self.operation_id,
            "distro": self.distro,
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "plan": self.plan.to_dict() if self.plan else None,
            "completed_phases": [p.name.lower() for p in self.completed_phases],
            "enabled_repositories": list(self.enabled_repositories),
            "built": list(self.built),
            "configured": self.configured,
            "error": str(self.error) if self.error else None,
            "failed_phase": self.failed_phase.name.lower() if self.failed_phase is not None else None,
            "log_lines": list(self.log_lines),
        }


class ProgressSink:
    """Forward events to the caller, keeping progress monotonic.

    Events below the high-water mark are clamped up. Failure events
    (``error`` set) pass through unchanged; the run aborts right after.
    Output lines are also kept in a ``LogWindow`` for display.
    """

    def __init__(self, downstream: EventSink | None, window: LogWindow) -> None:
        self._downstream = downstream
        self.window = window
        self.high = 0.0

    def __call__(self, event: ProgressEvent) -> None:
        if event.error is None:
            if event.log_output is not None:
                self.window.append(event.log_output)
            if event.progress < self.high:
                event = dataclasses.replace(event, progress=self.high)
            else:
                self.high = event.progress
        if self._downstream is not None:
            self._downstream(event)


class PhaseScheduler:
    """Drive one installation through every phase in order.

    Args:
        distro: Distribution strategy for this host.
        runner: CommandRunner holding the credential and cancel signal.
        settings: Installer tunables.
        executor: Manual build executor (built from settings if omitted).
        configurator: Shell configurator (built from settings if omitted).
    """

    def __init__(
        self,
        distro: DistroStrategy,
        runner: CommandRunner,
        settings: InstallerSettings | None = None,
        *,
        executor: ManualBuildExecutor | None = None,
        configurator: ShellConfigurator | None = None,
    ) -> None:
        self.distro = distro
        self.runner = runner
        self.settings = settings or InstallerSettings()
        self.enabler = RepositoryEnabler(runner, distro)
        self.executor = executor or ManualBuildExecutor(
            runner,
            distro,
            self.settings.build_root,
            paths=BuildPaths(
                shell_config_repo=self.settings.shell_config_repo,
                shell_config_dir=self.settings.shell_config_dir,
            ),
        )
        self.configurator = configurator or ShellConfigurator(
            runner, self.settings.shell_config_repo, self.settings.shell_config_dir,
        )

    def plan(
        self,
        dependencies: list[Dependency],
        selection: Selection,
        reinstall: Iterable[str] = (),
    ) -> CategorizedPackages:
        """Categorize without executing anything."""
        selection = selection.with_dependency_variants(dependencies)
        table = self.distro.mapping_table(selection)
        return categorize(dependencies, table, reinstall, distro=self.distro.distro_id)

    def run(
        self,
        dependencies: list[Dependency],
        selection: Selection,
        reinstall: Iterable[str] = (),
        emit: EventSink | None = None,
    ) -> InstallReport:
        """Install everything ``dependencies`` still needs.

        Never raises for install failures; inspect ``report.error`` or
        call ``report.raise_for_error()``.
        """
        report = InstallReport(
            operation_id=str(uuid.uuid4())[:8],
            distro=self.distro.distro_id,
            started_at=datetime.now(UTC).isoformat(),
        )
        sink = ProgressSink(emit, LogWindow(self.settings.log_window))

        plan = self.plan(dependencies, selection, reinstall)
        report.plan = plan
        for warning in plan.unresolved:
            sink(ProgressEvent(
                phase=InstallPhase.PREREQUISITES,
                progress=0.0,
                step="Skipping unmapped dependency",
                log_output=f"Warning: {warning}",
            ))

        logger.info(
            "Install %s on %s: %d system, %d extra, %d manual",
            report.operation_id, self.distro.distro_id,
            len(plan.system), len(plan.extra), len(plan.manual),
        )

        phases: list[tuple[InstallPhase, bool, Callable[[float, float, EventSink], None]]] = [
            (InstallPhase.PREREQUISITES, True, self._prerequisites),
            (InstallPhase.REPOSITORY_ENABLE, bool(self.enabler.pending(plan.extra)),
             lambda lo, hi, out: report.enabled_repositories.extend(
                 self.enabler.enable(plan.extra, InstallPhase.REPOSITORY_ENABLE, lo, hi, out))),
            (InstallPhase.SYSTEM_PACKAGES, bool(plan.system),
             lambda lo, hi, out: self._install(
                 self.distro.system_install(plan.system), InstallPhase.SYSTEM_PACKAGES, lo, hi, out)),
            (InstallPhase.EXTRA_REPO_PACKAGES, bool(plan.extra),
             lambda lo, hi, out: self._extra(plan, report, lo, hi, out)),
            (InstallPhase.MANUAL_BUILDS, bool(plan.manual),
             lambda lo, hi, out: report.built.extend(
                 self.executor.build_all(plan.manual, InstallPhase.MANUAL_BUILDS, lo, hi, out))),
            (InstallPhase.CONFIGURATION, True,
             lambda lo, hi, out: self._configure(report, lo, hi, out)),
        ]

        try:
            for phase, needed, body in phases:
                if not needed:
                    logger.debug("Skipping %s: nothing to do", phase.label)
                    continue
                self._run_phase(phase, body, sink)
                report.completed_phases.append(phase)

            sink(ProgressEvent(
                phase=InstallPhase.COMPLETE,
                progress=1.0,
                step="Installation complete",
                is_complete=True,
            ))
            report.completed_phases.append(InstallPhase.COMPLETE)
            logger.info("Install %s complete", report.operation_id)
        except PhaseError as e:
            logger.error("Install %s aborted: %s", report.operation_id, e)
            report.error = e
        finally:
            report.log_lines = sink.window.lines
            report.finished_at = datetime.now(UTC).isoformat()
        return report

    # ── Phase plumbing ──────────────────────────────────────────

    def _run_phase(
        self,
        phase: InstallPhase,
        body: Callable[[float, float, EventSink], None],
        sink: ProgressSink,
    ) -> None:
        start, end = PHASE_RANGES[phase]
        logger.info("Phase: %s", phase.label)
        sink(ProgressEvent(phase=phase, progress=start, step=f"{phase.label}..."))
        try:
            body(start, end, sink)
        except ManualBuildError as e:
            raise PhaseError(phase, str(e), package=e.package) from e
        except RepositoryEnableFailure as e:
            raise PhaseError(phase, str(e), package=e.identity) from e
        except (ProvisionError, OSError) as e:
            raise PhaseError(phase, str(e)) from e

    def _install(
        self,
        commands: list,
        phase: InstallPhase,
        start: float,
        end: float,
        emit: EventSink,
    ) -> None:
        count = len(commands)
        for i, command in enumerate(commands):
            self.runner.run(
                command, phase,
                interpolate(start, end, i / count),
                interpolate(start, end, (i + 1) / count),
                emit,
                step=f"{phase.label}...",
            )

    # ── Phases ──────────────────────────────────────────────────

    def _prerequisites(self, start: float, end: float, emit: EventSink) -> None:
        prerequisites = self.distro.prerequisites()
        count = len(prerequisites) or 1
        for i, prereq in enumerate(prerequisites):
            lo = interpolate(start, end, i / count)
            hi = interpolate(start, end, (i + 1) / count)
            if prereq.check is not None and self.runner.run_quiet(prereq.check):
                emit(ProgressEvent(
                    phase=InstallPhase.PREREQUISITES,
                    progress=hi,
                    step=f"{prereq.name} already installed",
                    log_output=f"{prereq.name} is already installed",
                ))
                continue
            self._install(prereq.install, InstallPhase.PREREQUISITES, lo, hi, emit)

    def _extra(
        self,
        plan: CategorizedPackages,
        report: InstallReport,
        start: float,
        end: float,
        emit: EventSink,
    ) -> None:
        phase = InstallPhase.EXTRA_REPO_PACKAGES
        if self.distro.extra_build is not None:
            report.built.extend(
                self.executor.build_all(plan.extra, phase, start, end, emit, strategy=self.distro.extra_build)
            )
        else:
            self._install(self.distro.extra_install(plan.extra_names), phase, start, end, emit)

    def _configure(self, report: InstallReport, start: float, end: float, emit: EventSink) -> None:
        if self.settings.skip_configuration:
            logger.info("Configuration skipped by settings")
            return
        report.configured = self.configurator.configure(InstallPhase.CONFIGURATION, start, end, emit)


# ── Entry points ────────────────────────────────────────────────


def run_install(
    dependencies: list[Dependency],
    selection: Selection,
    credential: SudoCredential | None = None,
    *,
    reinstall: Iterable[str] = (),
    settings: InstallerSettings | None = None,
    registry: DistroRegistry | None = None,
    emit: EventSink | None = None,
    cancel_event: threading.Event | None = None,
) -> InstallReport:
    """Build the runner and scheduler for ``selection.distro`` and run.

    Raises:
        UnsupportedDistributionError: unknown distribution id.
    """
    settings = settings or InstallerSettings()
    distro = (registry or default_registry()).get(selection.distro)
    if credential:
        register_secret(credential.reveal())
    runner = CommandRunner(
        credential,
        timeout=settings.command_timeout,
        tick_interval=settings.tick_interval,
        cancel_event=cancel_event,
    )
    return PhaseScheduler(distro, runner, settings).run(dependencies, selection, reinstall, emit)


class InstallStream:
    """Run an install on a worker thread; iterate to receive its events.

    After iteration ends, ``report`` holds the ``InstallReport``.
    Leaving the loop early cancels the install.
    """

    def __init__(
        self,
        target: Callable[[EventSink, threading.Event], InstallReport],
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.cancel_event = cancel_event or threading.Event()
        self.report: InstallReport | None = None
        self._target = target
        self._channel = ProgressChannel()
        self._error: Exception | None = None
        self._thread = threading.Thread(target=self._work, name="provision-install", daemon=True)

    def cancel(self) -> None:
        self.cancel_event.set()

    def close(self) -> None:
        """Cancel if still running and wait for the worker to finish."""
        if self._thread.is_alive():
            self.cancel()
            self._channel.abandon()
            self._thread.join()

    def _work(self) -> None:
        try:
            self.report = self._target(self._channel.put, self.cancel_event)
        except Exception as e:
            # Re-raised on the consumer thread
            self._error = e
        finally:
            self._channel.close()

    def __iter__(self) -> Iterator[ProgressEvent]:
        self._thread.start()
        finished = False
        try:
            yield from self._channel
            finished = True
        finally:
            if not finished:
                self.close()
            self._thread.join()
        if self._error is not None:
            raise self._error


def stream_install(
    dependencies: list[Dependency],
    selection: Selection,
    credential: SudoCredential | None = None,
    **kwargs,
) -> InstallStream:
    """Like ``run_install`` but streams events through a ``ProgressChannel``."""

    def target(emit: EventSink, cancel_event: threading.Event) -> InstallReport:
        return run_install(
            dependencies, selection, credential,
            emit=emit, cancel_event=cancel_event, **kwargs,
        )

    return InstallStream(target)
