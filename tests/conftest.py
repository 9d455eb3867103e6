import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Ensure project root is on sys.path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from sshdeck.fs import MemoryFileSystem  # noqa: E402


class FakeClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def memfs():
    return MemoryFileSystem()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def _isolate_user_dirs(monkeypatch, tmp_path):
    """Keep tests away from the real ~/.config and ~/.ssh."""
    monkeypatch.setenv("SSHDECK_CONFIG_DIR", str(tmp_path / "sshdeck-config"))
    monkeypatch.setenv("SSHDECK_SSH_DIR", str(tmp_path / "ssh"))
