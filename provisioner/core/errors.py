"""
Installer error taxonomy.

Every fatal error is a ``ProvisionError``. The scheduler wraps whatever
escapes a phase in ``PhaseError`` (phase + package context, original
exception chained as ``__cause__``) before it reaches the caller.

``ResolutionWarning`` is not an exception: an unmapped
dependency is logged and skipped, and the run continues.
"""

from __future__ import annotations

from dataclasses import dataclass

from provisioner.core.models.progress import InstallPhase


class ProvisionError(Exception):
    """Base class for all fatal installer errors."""


class CommandFailure(ProvisionError):
    """A command exited with a non-zero status."""

    def __init__(self, command: str, returncode: int, last_line: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.last_line = last_line
        msg = f"Command failed (exit {returncode}): {command}"
        if last_line:
            msg += f": {last_line}"
        super().__init__(msg)


class PrivilegeError(CommandFailure):
    """sudo is required but the credential is missing or was rejected."""

    def __init__(self, command: str, returncode: int, reason: str = "Wrong sudo password") -> None:
        super().__init__(command, returncode, reason)
        self.args = (f"{reason}: {command}",)


class CommandTimeout(ProvisionError):
    """A command produced no output for the whole timeout window."""

    def __init__(self, command: str, timeout: float) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout:g}s without output: {command}")


class InstallCancelled(ProvisionError):
    """The caller cancelled the run."""

    def __init__(self, command: str = "") -> None:
        self.command = command
        super().__init__(f"Installation cancelled{f' during: {command}' if command else ''}")


class RepositoryEnableFailure(ProvisionError):
    """An extra repository could not be enabled or post-configured."""

    def __init__(self, identity: str, reason: str = "") -> None:
        self.identity = identity
        super().__init__(f"Failed to enable repository {identity}{f': {reason}' if reason else ''}")


class ManualBuildError(ProvisionError):
    """One step of a source build failed."""

    def __init__(self, package: str, step: str, reason: str = "") -> None:
        self.package = package
        self.step = step
        super().__init__(
            f"Manual build of {package} failed at step '{step}'{f': {reason}' if reason else ''}"
        )


class PhaseError(ProvisionError):
    """A phase aborted the run."""

    def __init__(self, phase: InstallPhase, message: str, package: str | None = None) -> None:
        self.phase = phase
        self.package = package
        where = f"{phase.label}" + (f" [{package}]" if package else "")
        super().__init__(f"{where}: {message}")


class UnsupportedDistributionError(ProvisionError):
    """No strategy is registered for the requested distribution id."""

    def __init__(self, distro_id: str) -> None:
        self.distro_id = distro_id
        super().__init__(f"unsupported distribution: {distro_id}")


@dataclass(frozen=True)
class ResolutionWarning:
    """A dependency with no package mapping in the current context."""

    name: str
    distro: str

    def __str__(self) -> str:
        return f"No package mapping for {self.name} on {self.distro}"
