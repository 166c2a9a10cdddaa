"""
Package categorizer — split dependencies into install buckets.

Pure function of its inputs: no I/O, deterministic for a fixed
dependency order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from provisioner.core.errors import ResolutionWarning
from provisioner.core.models.dependency import Dependency
from provisioner.core.models.package import PackageMapping, RepositoryType

logger = logging.getLogger(__name__)


# Packages that bundle others: the listed prerequisites must be
# installed before the bundle itself.
BUNDLE_PREREQUISITES: Mapping[str, tuple[str, ...]] = {
    "dms-shell-git": (
        "quickshell",
        "quickshell-git",
        "dgop",
        "ttf-material-symbols-variable-git",
        "material-symbols-git",
    ),
}


@dataclass
class CategorizedPackages:
    """Result of categorization.

    ``extra`` keeps the full mappings so repository identities remain
    available to the repository enabler.
    """

    system: list[str] = field(default_factory=list)
    extra: list[PackageMapping] = field(default_factory=list)
    manual: list[PackageMapping] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    unresolved: list[ResolutionWarning] = field(default_factory=list)

    @property
    def extra_names(self) -> list[str]:
        return [m.name for m in self.extra]

    @property
    def manual_names(self) -> list[str]:
        return [m.name for m in self.manual]

    @property
    def is_empty(self) -> bool:
        return not (self.system or self.extra or self.manual)

    def to_dict(self) -> dict:
        return {
            "system": list(self.system),
            "extra": [
                {"name": m.name, "repo": m.repo} for m in self.extra
            ],
            "manual": [
                {"name": m.name, "build": m.build.value if m.build else None}
                for m in self.manual
            ],
            "skipped": list(self.skipped),
            "unresolved": [w.name for w in self.unresolved],
        }


def categorize(
    dependencies: Iterable[Dependency],
    mapping_table: Mapping[str, PackageMapping],
    reinstall: Iterable[str] = (),
    *,
    distro: str = "",
) -> CategorizedPackages:
    """Assign each dependency to exactly one bucket or one warning.

    Installed dependencies are skipped unless named in ``reinstall``.
    Several dependency names may resolve to one concrete package; it is
    listed once.
    """
    overrides = frozenset(reinstall)
    result = CategorizedPackages()
    seen: set[tuple[RepositoryType, str]] = set()

    for dep in dependencies:
        if dep.installed and dep.name not in overrides:
            result.skipped.append(dep.name)
            continue

        mapping = mapping_table.get(dep.name)
        if mapping is None:
            warning = ResolutionWarning(name=dep.name, distro=distro)
            logger.warning("%s", warning)
            result.unresolved.append(warning)
            continue

        key = (mapping.repository, mapping.name)
        if key in seen:
            logger.debug("%s resolves to already queued %s", dep.name, mapping.name)
            continue
        seen.add(key)

        if mapping.repository == RepositoryType.SYSTEM:
            result.system.append(mapping.name)
        elif mapping.repository == RepositoryType.EXTRA:
            result.extra.append(mapping)
        else:
            result.manual.append(mapping)

    result.system = order_bundles(result.system)
    result.extra = order_bundles(result.extra, key=lambda m: m.name)
    result.manual = order_bundles(result.manual, key=lambda m: m.name)

    logger.info(
        "Categorized: %d system, %d extra, %d manual, %d skipped, %d unresolved",
        len(result.system), len(result.extra), len(result.manual),
        len(result.skipped), len(result.unresolved),
    )
    return result


def order_bundles(items: list, key=lambda item: item) -> list:
    """Stable partition: bundle prerequisites first, bundles last.

    Only bundles present in ``items`` cause any reordering.
    """
    names = [key(i) for i in items]
    bundles = {n for n in names if n in BUNDLE_PREREQUISITES}
    if not bundles:
        return list(items)
    prereqs = {p for b in bundles for p in BUNDLE_PREREQUISITES[b]}
    first = [i for i in items if key(i) in prereqs]
    middle = [i for i in items if key(i) not in prereqs and key(i) not in bundles]
    last = [i for i in items if key(i) in bundles]
    return first + middle + last
