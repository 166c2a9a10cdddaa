"""
Repository enabler — turn on the extra repositories a run needs.

Each identity (COPR slug, PPA) is enabled at most once per run. Some
repositories need a follow-up action right after they are enabled;
those live in ``POST_ENABLE_ACTIONS``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from provisioner.core.distros.base import DistroStrategy
from provisioner.core.engine.command_runner import Command, CommandRunner, EventSink
from provisioner.core.errors import InstallCancelled, ProvisionError, RepositoryEnableFailure
from provisioner.core.models.package import PackageMapping
from provisioner.core.models.progress import InstallPhase, interpolate

logger = logging.getLogger(__name__)

NIRI_COPR_REPO_FILE = "/etc/yum.repos.d/_copr:copr.fedorainfracloud.org:yalter:niri-git.repo"


def append_line(path: str, line: str) -> Command:
    """Privileged append of one line to a root-owned file.

    The path and line travel as positional arguments, never spliced
    into the script text.
    """
    return Command(
        ["sh", "-c", 'printf "%s\\n" "$2" >> "$1"', "sh", path, line],
        privileged=True,
        label=f"append '{line}' to {path}",
    )


POST_ENABLE_ACTIONS: Mapping[str, Callable[[], list[Command]]] = {
    # Prefer the niri-git COPR over Fedora's own niri build
    "yalter/niri-git": lambda: [append_line(NIRI_COPR_REPO_FILE, "priority=1")],
}


class RepositoryEnabler:
    """Enable extra repositories for one run."""

    def __init__(self, runner: CommandRunner, distro: DistroStrategy) -> None:
        self._runner = runner
        self._distro = distro
        self._enabled: set[str] = set()

    @property
    def enabled(self) -> set[str]:
        return set(self._enabled)

    def pending(self, entries: list[PackageMapping]) -> list[str]:
        """Identities in ``entries`` that still need enabling, in order."""
        out: list[str] = []
        for entry in entries:
            identity = entry.repo
            if not identity or identity in self._enabled or identity in out:
                continue
            if self._distro.enable_repository(identity) is None:
                continue
            out.append(identity)
        return out

    def enable(
        self,
        entries: list[PackageMapping],
        phase: InstallPhase,
        start: float,
        end: float,
        emit: EventSink,
    ) -> list[str]:
        """Enable every repository ``entries`` reference.

        Returns:
            Identities enabled by this call.

        Raises:
            RepositoryEnableFailure: an enable, post-action or refresh failed.
        """
        identities = self.pending(entries)
        if not identities:
            logger.debug("No repositories to enable")
            return []

        pre = self._distro.repository_pre_enable()
        refresh = self._distro.repository_refresh()
        actions = {i: POST_ENABLE_ACTIONS[i]() for i in identities if i in POST_ENABLE_ACTIONS}
        total = len(pre) + len(identities) + sum(len(a) for a in actions.values()) + len(refresh)
        slot = 0

        def run(command: Command, identity: str, step: str) -> None:
            nonlocal slot
            lo = interpolate(start, end, slot / total)
            hi = interpolate(start, end, (slot + 1) / total)
            slot += 1
            try:
                self._runner.run(command, phase, lo, hi, emit, step=step)
            except InstallCancelled:
                raise
            except ProvisionError as e:
                raise RepositoryEnableFailure(identity, str(e)) from e

        for command in pre:
            run(command, identities[0], "Preparing repository tools...")

        for identity in identities:
            logger.info("Enabling repository %s", identity)
            run(self._distro.enable_repository(identity), identity, f"Enabling {identity}...")
            for command in actions.get(identity, []):
                run(command, identity, f"Configuring {identity}...")
            self._enabled.add(identity)

        for command in refresh:
            run(command, identities[-1], "Refreshing package lists...")

        return identities
