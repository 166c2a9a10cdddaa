"""
Distribution strategies — per-family package vocabulary.

    from provisioner.core.distros import default_registry
    distro = default_registry().get("fedora")
"""

from provisioner.core.distros.arch import ArchDistro
from provisioner.core.distros.base import DistroStrategy, Prerequisite
from provisioner.core.distros.fedora import FedoraDistro
from provisioner.core.distros.opensuse import OpenSUSEDistro
from provisioner.core.distros.registry import DistroRegistry, default_registry
from provisioner.core.distros.ubuntu import UbuntuDistro

__all__ = [
    "ArchDistro",
    "DistroRegistry",
    "DistroStrategy",
    "FedoraDistro",
    "OpenSUSEDistro",
    "Prerequisite",
    "UbuntuDistro",
    "default_registry",
]
