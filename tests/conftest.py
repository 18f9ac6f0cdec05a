"""Shared test fixtures for the MOM follow-up package."""

import sys
from pathlib import Path

import pytest

# Ensure the source directory is importable without installing the package.
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class RecordingSleep:
    """Virtual clock: records requested waits instead of sleeping."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
