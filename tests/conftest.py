import time
from unittest.mock import MagicMock

import pytest

from hostwatch.alert_history import AlertHistory
from hostwatch.alert_manager import AlertEngine
from hostwatch.alert_sender import Notifier
from hostwatch.database import create_db_engine, init_db, make_session_factory
from hostwatch.metric_store import MetricStore
from hostwatch.schemas import (
    CpuMetrics,
    DiskMetrics,
    MemoryMetrics,
    MetricSnapshot,
    NetworkMetrics,
    NetworkStatus,
)
from hostwatch.settings import SettingsStore
from hostwatch.silence import SilenceManager

TEST_TOKEN = "testtoken1234567890abcdefABCDEF12"


@pytest.fixture
def session_factory():
    # In-memory SQLite shared through StaticPool
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def settings(session_factory):
    return SettingsStore(session_factory, initial_token=TEST_TOKEN)


@pytest.fixture
def history(session_factory):
    return AlertHistory(session_factory)


@pytest.fixture
def silence(settings, session_factory):
    manager = SilenceManager(settings, session_factory)
    yield manager
    manager.shutdown()


@pytest.fixture
def notifier():
    return MagicMock(spec=Notifier)


@pytest.fixture
def engine(settings, history, silence, notifier):
    return AlertEngine(settings, history, silence, notifier)


@pytest.fixture
def store():
    return MetricStore()


@pytest.fixture
def make_snapshot():
    def _make(memory=50.0, cpu=20.0, disk=40.0, network=NetworkStatus.NORMAL, timestamp=None):
        return MetricSnapshot(
            timestamp=time.time() if timestamp is None else timestamp,
            memory=MemoryMetrics(total_bytes=16 * 1024 ** 3, used_bytes=int(16 * 1024 ** 3 * memory / 100),
                                 used_percent=memory),
            cpu=CpuMetrics(usage_percent=cpu, load1=1.0, load5=0.8, load15=0.5),
            disk=DiskMetrics(used_percent=disk),
            network=NetworkMetrics(status=network, last_ok_timestamp=1000.0),
        )
    return _make
