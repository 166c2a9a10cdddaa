"""
Progress model — the event stream between the installer and its caller.

Every phase owns a fixed slice of the [0, 1] progress range. Phases
run in enum order and never overlap going backward, so the stream a
caller sees is monotonic across a whole run.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any


class InstallPhase(IntEnum):
    """Ordered installation phases."""

    PREREQUISITES = 0
    REPOSITORY_ENABLE = 1
    SYSTEM_PACKAGES = 2
    EXTRA_REPO_PACKAGES = 3
    MANUAL_BUILDS = 4
    CONFIGURATION = 5
    COMPLETE = 6

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


# (start, end) of each phase's progress slice.
PHASE_RANGES: dict[InstallPhase, tuple[float, float]] = {
    InstallPhase.PREREQUISITES: (0.05, 0.12),
    InstallPhase.REPOSITORY_ENABLE: (0.15, 0.27),
    InstallPhase.SYSTEM_PACKAGES: (0.35, 0.60),
    InstallPhase.EXTRA_REPO_PACKAGES: (0.65, 0.80),
    InstallPhase.MANUAL_BUILDS: (0.85, 0.88),
    InstallPhase.CONFIGURATION: (0.90, 0.90),
    InstallPhase.COMPLETE: (1.0, 1.0),
}


@dataclass(frozen=True)
class ProgressEvent:
    """A single progress update.

    Transient: produced by the command runner or the scheduler,
    consumed once by the caller.
    """

    phase: InstallPhase
    progress: float
    step: str = ""
    is_complete: bool = False
    needs_privilege: bool = False
    command_info: str | None = None
    log_output: str | None = None
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.name.lower(),
            "progress": round(self.progress, 4),
            "step": self.step,
            "is_complete": self.is_complete,
            "needs_privilege": self.needs_privilege,
            "command_info": self.command_info,
            "log_output": self.log_output,
            "error": str(self.error) if self.error else None,
        }


def interpolate(start: float, end: float, fraction: float) -> float:
    """Point ``fraction`` of the way from ``start`` to ``end``."""
    return start + (end - start) * fraction
