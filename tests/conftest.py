# tests/conftest.py

import time
from pathlib import Path

import pytest
from PySide6.QtCore import Qt

from downloads_sorter.core.config_manager import RuleStore
from downloads_sorter.core.settle_gate import SettleGate, SettlePolicy
from downloads_sorter.core.sort_engine import SortEngine
from downloads_sorter.core.statistics_store import StatisticsStore

# Same shape as the production policy, scaled down so tests finish quickly.
FAST_POLICY = SettlePolicy(created_delay=0.05, modified_delay=0.05, retry_delay=0.2, max_retries=3)


def wait_until(predicate, timeout: float = 10.0, interval: float = 0.02) -> bool:
    """Polls `predicate` until it returns True or `timeout` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def make_file(directory: Path, name: str, size: int = 10) -> Path:
    """Creates a file of `size` bytes and returns its path."""
    path = directory / name
    path.write_bytes(b"x" * size)
    return path


def collect(signal) -> list:
    """Records every emission of a Qt signal. Connected directly, so worker-thread emissions are seen too."""
    received = []
    signal.connect(lambda *args: received.append(args), Qt.ConnectionType.DirectConnection)
    return received


@pytest.fixture
def config_dir(tmp_path):
    path = tmp_path / "config"
    path.mkdir()
    return path


@pytest.fixture
def watched_dir(tmp_path):
    """The folder being sorted, standing in for ~/Downloads."""
    path = tmp_path / "Downloads"
    path.mkdir()
    return path


@pytest.fixture
def rule_store(config_dir, watched_dir):
    """A rule store with the default rules, watching `watched_dir`."""
    store = RuleStore(config_dir)
    store.update_settings(source_path=str(watched_dir), min_file_size=0,
                          organize_by_date=False, notifications_enabled=True)
    return store


@pytest.fixture
def statistics_store(config_dir):
    return StatisticsStore(config_dir / "statistics.json")


@pytest.fixture
def make_engine(rule_store, statistics_store):
    """Factory for engines with a fast settle policy. Every engine is closed after the test."""
    engines = []

    def _make(probe=None, policy: SettlePolicy = FAST_POLICY) -> SortEngine:
        gate = SettleGate(policy, probe) if probe else SettleGate(policy)
        engine = SortEngine(rule_store, statistics_store, settle_gate=gate, backlog_throttle=0.0)
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        engine.close()


@pytest.fixture
def engine(make_engine):
    return make_engine()
