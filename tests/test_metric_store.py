from hostwatch.metric_store import MetricStore, clamp_points
from hostwatch.schemas import NetworkStatus


def test_empty_store(store):
    """A new store has no snapshot and empty series"""
    assert store.latest_snapshot is None
    assert len(store) == 0
    series = store.get_series()
    assert series.memory_used_percent == []
    assert series.network_status == []


def test_series_order_and_latest(store, make_snapshot):
    """Series are oldest first and latest is the last added"""
    for i in range(5):
        store.add_snapshot(make_snapshot(cpu=float(i), timestamp=1000.0 + i))

    assert store.latest_snapshot.timestamp == 1004.0
    assert store.get_series().cpu_usage_percent == [0.0, 1.0, 2.0, 3.0, 4.0]
    assert store.get_series(2).cpu_usage_percent == [3.0, 4.0]


def test_capacity_evicts_oldest(make_snapshot):
    """The oldest samples are evicted at capacity"""
    store = MetricStore(capacity=3)
    for i in range(5):
        store.add_snapshot(make_snapshot(memory=float(i)))

    assert len(store) == 3
    assert store.get_series().memory_used_percent == [2.0, 3.0, 4.0]
    # Never more than capacity
    assert store.get_series(100).memory_used_percent == [2.0, 3.0, 4.0]


def test_set_capacity_trims_immediately(store, make_snapshot):
    """Shrinking capacity trims held samples"""
    for i in range(10):
        store.add_snapshot(make_snapshot(disk=float(i)))

    store.set_capacity(4)
    assert store.capacity == 4
    assert store.get_series().disk_used_percent == [6.0, 7.0, 8.0, 9.0]


def test_capacity_is_clamped():
    """Capacity stays between 1 and 300"""
    assert clamp_points(0) == 1
    assert clamp_points(500) == 300
    assert MetricStore(capacity=1000).capacity == 300
    assert MetricStore(capacity=-3).capacity == 1


def test_network_series_uses_status_values(store, make_snapshot):
    """Network series holds status strings"""
    store.add_snapshot(make_snapshot(network=NetworkStatus.NORMAL))
    store.add_snapshot(make_snapshot(network=NetworkStatus.DOWN))
    assert store.get_series().network_status == ["normal", "down"]


def test_clear(store, make_snapshot):
    """Clearing drops every sample"""
    store.add_snapshot(make_snapshot())
    store.clear()
    assert store.latest_snapshot is None
    assert len(store) == 0
