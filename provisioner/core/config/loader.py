"""
Configuration loader — reads provision.yml and dependency lists.

Reads YAML, validates against Pydantic schemas, and returns typed
domain objects. A missing provision.yml means "use the defaults"; a
broken one is an error.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from provisioner.core.models.dependency import Dependency
from provisioner.core.models.settings import InstallerSettings

logger = logging.getLogger(__name__)

# Default config filename
SETTINGS_FILE = "provision.yml"


class ConfigError(Exception):
    """Raised when installer configuration is invalid or missing."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for provision.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to provision.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / SETTINGS_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def _read_yaml(path: Path) -> object:
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def load_settings(path: Path | None = None) -> InstallerSettings:
    """Load installer settings.

    Args:
        path: Explicit path to provision.yml. If None, searches upward
            and falls back to defaults when nothing is found.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None:
        path = find_config_file()
        if path is None:
            logger.debug("No %s found, using defaults", SETTINGS_FILE)
            return InstallerSettings()

    logger.debug("Loading settings from %s", path)
    data = _read_yaml(path)
    if data is None:
        return InstallerSettings()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under an "installer" key or be flat
    settings_data = data.get("installer", data)

    try:
        settings = InstallerSettings.model_validate(settings_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {path}: {e}") from e

    logger.info("Loaded settings from %s", path)
    return settings


def load_dependencies(path: Path) -> list[Dependency]:
    """Load a dependency list written by the detection step.

    Accepts either a top-level list or a mapping with a ``dependencies``
    key. Entries are mappings, or bare names (meaning "missing").

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    data = _read_yaml(path)
    if isinstance(data, dict):
        data = data.get("dependencies")
    if not isinstance(data, list):
        raise ConfigError(f"Expected a list of dependencies in {path}")

    deps: list[Dependency] = []
    for i, entry in enumerate(data):
        if isinstance(entry, str):
            entry = {"name": entry}
        try:
            deps.append(Dependency.model_validate(entry))
        except ValidationError as e:
            raise ConfigError(f"Invalid dependency #{i + 1} in {path}: {e}") from e

    logger.info("Loaded %d dependencies from %s", len(deps), path)
    return deps
