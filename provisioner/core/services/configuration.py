"""Post-install configuration: fetch the shell configuration checkout."""

from __future__ import annotations

import logging
from pathlib import Path

from provisioner.core.engine.command_runner import Command, CommandRunner, EventSink
from provisioner.core.models.progress import InstallPhase

logger = logging.getLogger(__name__)


class ShellConfigurator:
    """Clone the shell configuration repository when it is absent."""

    def __init__(self, runner: CommandRunner, repo: str, target: Path) -> None:
        self._runner = runner
        self.repo = repo
        self.target = Path(target)

    def configure(self, phase: InstallPhase, start: float, end: float, emit: EventSink) -> bool:
        """Returns True when a fresh checkout was made."""
        if self.target.exists():
            logger.info("Shell configuration already present at %s", self.target)
            return False
        self.target.parent.mkdir(parents=True, exist_ok=True)
        self._runner.run(
            Command(["git", "clone", self.repo, str(self.target)]),
            phase, start, end, emit,
            step="Cloning shell configuration...",
        )
        logger.info("Cloned %s into %s", self.repo, self.target)
        return True
