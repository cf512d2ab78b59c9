import json
import time

import pytest

from hostwatch.alert_history import (
    AlertHistory,
    CSV_HEADER,
    determine_severity,
    generate_message,
)
from hostwatch.schemas import AlertEvent, AlertSeverity, AlertType

DAY = 86400


@pytest.fixture
def now():
    return time.time()


@pytest.mark.parametrize("alert_type, value, threshold, expected", [
    (AlertType.MEMORY, 95.0, 85.0, AlertSeverity.WARNING),
    (AlertType.MEMORY, 100.0, 79.0, AlertSeverity.CRITICAL),
    (AlertType.CPU, 100.0, 80.0, AlertSeverity.WARNING),
    (AlertType.CPU, 100.0, 79.9, AlertSeverity.CRITICAL),
    (AlertType.DISK, 95.0, 85.0, AlertSeverity.WARNING),
    (AlertType.DISK, 96.0, 85.0, AlertSeverity.CRITICAL),
    (AlertType.NETWORK, 0.0, 0.0, AlertSeverity.CRITICAL),
])
def test_determine_severity(alert_type, value, threshold, expected):
    """Severity is critical past the per-type margin"""
    assert determine_severity(alert_type, value, threshold) == expected


def test_generate_message():
    """Messages name the metric, value and threshold"""
    assert generate_message(AlertType.CPU, 95.25, 90.0) == "CPU usage 95.2% exceeds threshold 90.0%"
    assert generate_message(AlertType.NETWORK, 0.0, 0.0) == "Network connection lost"


def test_record_and_resolve(history, now):
    """Resolving sets the duration and happens once"""
    event = history.record_alert("local", "host", AlertType.DISK, 97.0, 90.0, triggered_at=now - 60)
    assert not event.is_resolved
    assert event.duration is None

    resolved = history.resolve_alert(event.id, resolved_at=now)
    assert resolved.is_resolved
    assert resolved.duration == pytest.approx(60.0)

    # Already resolved
    assert history.resolve_alert(event.id, resolved_at=now + 10) is None
    assert history.resolve_alert("missing") is None


def test_resolve_latest_picks_most_recent_unresolved(history, now):
    """Only the newest open event of a device and type is resolved"""
    older = history.record_alert("local", "host", AlertType.CPU, 95.0, 90.0, triggered_at=now - 100)
    newer = history.record_alert("local", "host", AlertType.CPU, 96.0, 90.0, triggered_at=now - 50)
    history.record_alert("peer", "nas", AlertType.CPU, 97.0, 90.0, triggered_at=now - 10)

    resolved = history.resolve_latest("local", AlertType.CPU, resolved_at=now)
    assert resolved.id == newer.id

    unresolved = history.get_events(device_id="local", resolved=False)
    assert [e.id for e in unresolved] == [older.id]


def test_resolve_latest_without_open_event(history):
    """Resolving with nothing open returns None"""
    assert history.resolve_latest("local", AlertType.MEMORY) is None


def test_get_events_filters_and_order(history, now):
    """Filters combine and results come newest first"""
    history.record_alert("local", "host", AlertType.CPU, 95.0, 90.0, triggered_at=now - 300)
    history.record_alert("local", "host", AlertType.MEMORY, 99.0, 70.0, triggered_at=now - 200)
    history.record_alert("peer", "nas", AlertType.DISK, 92.0, 90.0, triggered_at=now - 100)

    events = history.get_events()
    assert [e.alert_type for e in events] == [AlertType.DISK, AlertType.MEMORY, AlertType.CPU]

    assert len(history.get_events(device_id="peer")) == 1
    assert len(history.get_events(severity=AlertSeverity.CRITICAL)) == 1
    assert len(history.get_events(start=now - 250)) == 2
    assert len(history.get_events(start=now - 250, end=now - 150)) == 1
    assert history.get_events(device_id="peer", alert_type=AlertType.CPU) == []


def test_count_limit_keeps_newest(session_factory, now):
    """The ledger keeps only the newest events past its cap"""
    history = AlertHistory(session_factory, max_events=5)
    for i in range(8):
        history.record_alert("local", "host", AlertType.CPU, 95.0, 90.0, triggered_at=now - 100 + i)

    events = history.get_events()
    assert len(events) == 5
    assert events[-1].triggered_at == now - 100 + 3


def test_old_events_are_dropped(history, now):
    """Events older than the retention period are removed"""
    history.record_alert("local", "host", AlertType.CPU, 95.0, 90.0, triggered_at=now - 31 * DAY)
    history.record_alert("local", "host", AlertType.CPU, 95.0, 90.0, triggered_at=now - 29 * DAY)

    events = history.get_events()
    assert len(events) == 1
    assert events[0].triggered_at == now - 29 * DAY


def test_expired_event_is_dropped_on_its_own_insert(history, now):
    """An event already past retention does not survive its insert"""
    history.record_alert("local", "host", AlertType.DISK, 95.0, 90.0, triggered_at=now - 31 * DAY)
    assert history.events == []


def test_count_limit_includes_new_event(session_factory, now):
    """The cap counts the event just inserted"""
    history = AlertHistory(session_factory, max_events=3)
    for i in range(4):
        history.record_alert("local", "host", AlertType.CPU, 95.0, 90.0, triggered_at=now - 10 + i)

    assert [e.triggered_at for e in history.events] == [now - 10 + 3, now - 10 + 2, now - 10 + 1]


def test_statistics(history, now):
    """Counts per type cover the requested window"""
    history.record_alert("local", "host", AlertType.CPU, 95.0, 90.0, triggered_at=now - 2 * DAY)
    history.record_alert("local", "host", AlertType.CPU, 95.0, 90.0, triggered_at=now - 60)
    history.record_alert("local", "host", AlertType.DISK, 95.0, 90.0, triggered_at=now - 30)

    stats = history.get_statistics(now=now)
    assert stats[AlertType.CPU] == 1
    assert stats[AlertType.DISK] == 1
    assert stats[AlertType.MEMORY] == 0
    assert stats[AlertType.NETWORK] == 0

    assert history.get_statistics(time_range=7 * DAY, now=now)[AlertType.CPU] == 2


def test_clear_all_events(history, now):
    """Clearing empties the ledger"""
    history.record_alert("local", "host", AlertType.CPU, 95.0, 90.0, triggered_at=now)
    history.clear_all_events()
    assert history.events == []


def test_export_csv():
    """CSV export is newest first with quoted fields"""
    resolved = AlertEvent(
        id="a", device_id="local", device_name="host", alert_type=AlertType.CPU,
        severity=AlertSeverity.WARNING, message="CPU usage 95.0% exceeds threshold 90.0%",
        value=95.0, threshold=90.0, triggered_at=1_700_000_000.0, resolved_at=1_700_000_042.0,
    )
    active = AlertEvent(
        id="b", device_id="local", device_name="rack, shelf 2", alert_type=AlertType.MEMORY,
        severity=AlertSeverity.WARNING, message="Memory usage 88.2% exceeds threshold 85.0%",
        value=88.25, threshold=85.0, triggered_at=1_700_000_100.0,
    )

    lines = AlertHistory.export_csv([resolved, active]).split("\n")
    assert lines[0] == ",".join(CSV_HEADER)
    assert lines[1] == (
        '2023-11-14T22:15:00Z,"rack, shelf 2",Memory,Warning,'
        "Memory usage 88.2% exceeds threshold 85.0%,88.2,85.0,Active,"
    )
    assert lines[2] == (
        "2023-11-14T22:13:20Z,host,Cpu,Warning,CPU usage 95.0% exceeds threshold 90.0%,95.0,90.0,Resolved,42"
    )


def test_export_json_is_deterministic(history, now):
    """JSON export does not depend on input order"""
    history.record_alert("local", "host", AlertType.CPU, 95.0, 90.0, triggered_at=now - 10)
    history.record_alert("local", "host", AlertType.DISK, 95.0, 90.0, triggered_at=now - 5)
    events = history.get_events()

    exported = AlertHistory.export_json(events)
    assert exported == AlertHistory.export_json(list(reversed(events)))

    data = json.loads(exported)
    assert [item["alert_type"] for item in data] == ["disk", "cpu"]
    assert data[0]["resolved_at"] is None
