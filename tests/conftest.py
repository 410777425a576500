import pytest
from pathlib import Path
from typer.testing import CliRunner

from quotashield.infrastructure.cache.ttl_store import DiskTTLStore
from quotashield.infrastructure.config.settings import clear_test_config


class FakeClock:
    """Manually advanced clock returning epoch milliseconds."""

    def __init__(self, start_ms: float = 1_700_000_000_000.0):
        self.now = start_ms

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock):
    """A DiskTTLStore in a temporary directory driven by the fake clock."""
    disk_store = DiskTTLStore(directory=tmp_path / "cache", clock=clock)
    yield disk_store
    disk_store.close()


@pytest.fixture(autouse=True)
def reset_test_config():
    """Ensures configuration overrides never leak between tests."""
    yield
    clear_test_config()
