from __future__ import annotations

import os

import pytest

from scribedesk.core.cleanup import CleanupService
from scribedesk.core.config.manager import ConfigManager
from scribedesk.core.config.paths import ConfigFsPaths
from scribedesk.core.events import EventBus, EventBusConfig
from scribedesk.core.store import TranscriptStore
from tests.helpers.fakes import FakeClock, InMemoryStore
from tests.helpers.records import NOW


@pytest.fixture
def tmp_config_root(tmp_path):
    """
    Provides an isolated repo root with config/ under tmp_path.
    """
    fs = ConfigFsPaths(root=str(tmp_path))
    os.makedirs(fs.config_dir, exist_ok=True)
    return fs


@pytest.fixture
def config_manager(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, logger=None, read_only=False)
    cm.load_all()
    return cm


@pytest.fixture
def sync_bus():
    bus = EventBus(cfg=EventBusConfig(synchronous=True), logger=None)
    yield bus
    bus.shutdown(0.5)


@pytest.fixture
def sqlite_store(tmp_path, sync_bus):
    return TranscriptStore(db_path=str(tmp_path / "data" / "scribedesk.db"), event_bus=sync_bus)


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def service(memory_store, clock):
    return CleanupService.from_store(memory_store, clock=clock)
