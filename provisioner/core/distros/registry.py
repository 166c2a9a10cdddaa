"""
Distro registry — maps distribution ids to strategies.

The registry is an explicit value built at startup and handed to
whatever needs it; there is no module-level mutable registry.
"""

from __future__ import annotations

import logging

from provisioner.core.distros.arch import ArchDistro
from provisioner.core.distros.base import DistroStrategy
from provisioner.core.distros.fedora import FedoraDistro
from provisioner.core.distros.opensuse import OpenSUSEDistro
from provisioner.core.distros.ubuntu import UbuntuDistro
from provisioner.core.errors import UnsupportedDistributionError

logger = logging.getLogger(__name__)


class DistroRegistry:
    """Lookup table of distro strategy classes keyed by id and alias."""

    def __init__(self) -> None:
        self._strategies: dict[str, type[DistroStrategy]] = {}

    def register(self, strategy: type[DistroStrategy]) -> None:
        for distro_id in (strategy.id, *strategy.aliases):
            if distro_id in self._strategies:
                logger.warning("Replacing strategy for distro '%s'", distro_id)
            self._strategies[distro_id] = strategy
        logger.debug("Registered %s for %s", strategy.__name__, (strategy.id, *strategy.aliases))

    def get(self, distro_id: str) -> DistroStrategy:
        """Build the strategy for ``distro_id``.

        Raises:
            UnsupportedDistributionError: no strategy is registered for it.
        """
        key = distro_id.strip().lower()
        strategy = self._strategies.get(key)
        if strategy is None:
            raise UnsupportedDistributionError(distro_id)
        return strategy(key)

    def __contains__(self, distro_id: str) -> bool:
        return distro_id.strip().lower() in self._strategies

    def entries(self) -> list[dict[str, str]]:
        """All registered ids with their strategy family and package manager."""
        return [
            {
                "id": distro_id,
                "family": strategy.id,
                "package_manager": strategy.package_manager,
            }
            for distro_id, strategy in sorted(self._strategies.items())
        ]


def default_registry() -> DistroRegistry:
    """A registry populated with every built-in distro family."""
    registry = DistroRegistry()
    for strategy in (ArchDistro, FedoraDistro, UbuntuDistro, OpenSUSEDistro):
        registry.register(strategy)
    return registry
