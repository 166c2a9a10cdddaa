"""
Installer services — categorization, repositories, builds and the
phase scheduler that ties them together.

    from provisioner.core.services import run_install
"""

from provisioner.core.services.categorizer import CategorizedPackages, categorize
from provisioner.core.services.manual_build import ManualBuildExecutor, build_workspace
from provisioner.core.services.repo_enabler import RepositoryEnabler
from provisioner.core.services.scheduler import (
    InstallReport,
    InstallStream,
    PhaseScheduler,
    run_install,
    stream_install,
)

__all__ = [
    "CategorizedPackages",
    "InstallReport",
    "InstallStream",
    "ManualBuildExecutor",
    "PhaseScheduler",
    "RepositoryEnabler",
    "build_workspace",
    "categorize",
    "run_install",
    "stream_install",
]
