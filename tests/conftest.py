"""
Shared pytest fixtures.

Fixtures here build in-memory server state, a throwaway upload directory
and a controllable clock so ordering-sensitive tests are deterministic.
"""

import datetime

import pytest

from server.rpc import Context
from server.state import ServerState
from server.uploads import UploadStore


class StepClock:
    """Clock that advances a fixed step on every call."""

    def __init__(self, start=None, step=datetime.timedelta(seconds=1)):
        self.now = start or datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)
        self.step = step

    def __call__(self):
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def clock():
    """Deterministic clock starting 2024-05-01 12:00 UTC, one second per call."""
    return StepClock()


@pytest.fixture
def state(clock):
    """Empty server state driven by the step clock."""
    return ServerState(clock=clock)


@pytest.fixture
def uploads(tmp_path):
    """Upload store rooted in a temporary directory."""
    return UploadStore(str(tmp_path / "uploads"))


@pytest.fixture
def ctx(state, uploads):
    """Server context used by the RPC dispatcher."""
    return Context(state=state, uploads=uploads)


@pytest.fixture
def png_bytes():
    """A tiny but valid PNG image."""
    import io
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (4, 3), (255, 0, 0)).save(buf, format="PNG")
    return buf.getvalue()
