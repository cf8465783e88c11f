"""
Pytest fixtures for the screenstack tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict

import pytest

from fakes import FakeClock, RecordingReleaser, make_settings
from services.session_store import SessionStore
from utils.config import Settings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def releaser() -> RecordingReleaser:
    return RecordingReleaser()


@pytest.fixture
def store(clock: FakeClock, releaser: RecordingReleaser) -> SessionStore:
    return SessionStore(45 * 60, clock=clock, releaser=releaser)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def artifacts(tmp_path: Path) -> Dict[int, Path]:
    """One placeholder artifact per slot number, named ``shot-<n>.jpg``."""
    paths = {}
    for slot in range(1, 10):
        path = tmp_path / f"shot-{slot}.jpg"
        path.write_bytes(b"jpeg")
        paths[slot] = path
    return paths
