"""
Domain models — Pydantic types and transient events for the installer.

All models are re-exported here for convenient access:

    from provisioner.core.models import Dependency, PackageMapping, ProgressEvent
"""

from provisioner.core.models.dependency import (
    Dependency,
    DependencyStatus,
    PackageVariant,
    Selection,
    Terminal,
    WindowManager,
)
from provisioner.core.models.package import BuildStrategy, PackageMapping, RepositoryType
from provisioner.core.models.progress import (
    PHASE_RANGES,
    InstallPhase,
    ProgressEvent,
)
from provisioner.core.models.settings import InstallerSettings, SelectionDefaults

__all__ = [
    # package.py
    "BuildStrategy",
    # dependency.py
    "Dependency",
    "DependencyStatus",
    # progress.py
    "InstallPhase",
    # settings.py
    "InstallerSettings",
    "PHASE_RANGES",
    "PackageMapping",
    "PackageVariant",
    "ProgressEvent",
    "RepositoryType",
    "Selection",
    "SelectionDefaults",
    "Terminal",
    "WindowManager",
]
