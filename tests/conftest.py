"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from doubles import EventLog, RecordingRunner


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def build_root(tmp_path: Path) -> Path:
    root = tmp_path / "builds"
    root.mkdir()
    return root
