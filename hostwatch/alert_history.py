import io
import csv
import json
import time
import uuid
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import session_scope
from .models import AlertEventRecord
from .schemas import AlertEvent, AlertSeverity, AlertType

logger = logging.getLogger(__name__)

MAX_EVENTS = 1000
RETENTION_DAYS = 30

CSV_HEADER = ["Time", "Device", "Type", "Severity", "Message", "Value", "Threshold", "Status", "Duration"]

# Overshoot (percentage points) above which a breach is critical
CRITICAL_MARGINS = {
    AlertType.MEMORY: 20.0,
    AlertType.CPU: 20.0,
    AlertType.DISK: 10.0,
}


def determine_severity(alert_type: AlertType, value: float, threshold: float) -> AlertSeverity:
    """Warning, or critical when the overshoot exceeds the type's margin"""
    if alert_type == AlertType.NETWORK:
        return AlertSeverity.CRITICAL
    overshoot = value - threshold
    return AlertSeverity.CRITICAL if overshoot > CRITICAL_MARGINS[alert_type] else AlertSeverity.WARNING


def generate_message(alert_type: AlertType, value: float, threshold: float) -> str:
    """Human readable description of a breach"""
    if alert_type == AlertType.MEMORY:
        return f"Memory usage {value:.1f}% exceeds threshold {threshold:.1f}%"
    if alert_type == AlertType.CPU:
        return f"CPU usage {value:.1f}% exceeds threshold {threshold:.1f}%"
    if alert_type == AlertType.DISK:
        return f"Disk usage {value:.1f}% exceeds threshold {threshold:.1f}%"
    return "Network connection lost"


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class AlertHistory:
    """Append-only alert event ledger bounded by count and age.

    Events are stored in the ``alert_events`` table. Every read returns events
    newest first. Database failures are logged and degrade to empty results.
    """

    def __init__(self, session_factory: sessionmaker, max_events: int = MAX_EVENTS,
                 retention_days: int = RETENTION_DAYS):
        self._session_factory = session_factory
        self._lock = threading.Lock()
        self.max_events = max_events
        self.retention_seconds = retention_days * 86400
        self.cleanup_old_events()

    def record_alert(self, device_id: str, device_name: str, alert_type: AlertType,
                     value: float, threshold: float, triggered_at: Optional[float] = None) -> AlertEvent:
        """Record a new alert event and enforce retention"""
        triggered_at = time.time() if triggered_at is None else triggered_at
        event = AlertEvent(
            id=str(uuid.uuid4()),
            device_id=device_id,
            device_name=device_name,
            alert_type=alert_type,
            severity=determine_severity(alert_type, value, threshold),
            message=generate_message(alert_type, value, threshold),
            value=value,
            threshold=threshold,
            triggered_at=triggered_at,
            resolved_at=None,
        )

        with self._lock:
            try:
                with session_scope(self._session_factory) as db:
                    db.add(AlertEventRecord(**event.model_dump(mode="json")))
                    db.flush()
                    self._enforce_retention(db, now=max(triggered_at, time.time()))
                logger.info(f"Alert recorded: [{event.severity.value}] {device_name} {event.message}")
            except SQLAlchemyError as e:
                logger.error(f"Failed to save alert event: {e}")
        return event

    def resolve_alert(self, event_id: str, resolved_at: Optional[float] = None) -> Optional[AlertEvent]:
        """Resolve one event by id; already resolved or unknown events return None"""
        resolved_at = time.time() if resolved_at is None else resolved_at
        with self._lock:
            try:
                with session_scope(self._session_factory) as db:
                    record = db.get(AlertEventRecord, event_id)
                    if record is None or record.resolved_at is not None:
                        return None
                    record.resolved_at = max(resolved_at, record.triggered_at)
                    db.flush()
                    return AlertEvent.model_validate(record)
            except SQLAlchemyError as e:
                logger.error(f"Failed to resolve alert event {event_id}: {e}")
                return None

    def resolve_latest(self, device_id: str, alert_type: AlertType,
                       resolved_at: Optional[float] = None) -> Optional[AlertEvent]:
        """Resolve the most recent unresolved event for (device, type)"""
        resolved_at = time.time() if resolved_at is None else resolved_at
        with self._lock:
            try:
                with session_scope(self._session_factory) as db:
                    record = (
                        db.query(AlertEventRecord)
                        .filter(AlertEventRecord.device_id == device_id)
                        .filter(AlertEventRecord.alert_type == AlertType(alert_type).value)
                        .filter(AlertEventRecord.resolved_at.is_(None))
                        .order_by(AlertEventRecord.triggered_at.desc())
                        .first()
                    )
                    if record is None:
                        return None
                    record.resolved_at = max(resolved_at, record.triggered_at)
                    db.flush()
                    event = AlertEvent.model_validate(record)
                logger.info(f"Alert resolved: {event.device_name} {event.alert_type.value}")
                return event
            except SQLAlchemyError as e:
                logger.error(f"Failed to resolve {alert_type} alert for {device_id}: {e}")
                return None

    def get_events(self, device_id: Optional[str] = None, alert_type: Optional[AlertType] = None,
                   severity: Optional[AlertSeverity] = None, resolved: Optional[bool] = None,
                   start: Optional[float] = None, end: Optional[float] = None) -> List[AlertEvent]:
        """Filtered events, newest first. All filters are optional and ANDed."""
        try:
            with session_scope(self._session_factory) as db:
                query = db.query(AlertEventRecord)
                if device_id is not None:
                    query = query.filter(AlertEventRecord.device_id == device_id)
                if alert_type is not None:
                    query = query.filter(AlertEventRecord.alert_type == AlertType(alert_type).value)
                if severity is not None:
                    query = query.filter(AlertEventRecord.severity == AlertSeverity(severity).value)
                if resolved is True:
                    query = query.filter(AlertEventRecord.resolved_at.isnot(None))
                elif resolved is False:
                    query = query.filter(AlertEventRecord.resolved_at.is_(None))
                if start is not None:
                    query = query.filter(AlertEventRecord.triggered_at >= start)
                if end is not None:
                    query = query.filter(AlertEventRecord.triggered_at <= end)
                records = query.order_by(AlertEventRecord.triggered_at.desc()).all()
                return [AlertEvent.model_validate(record) for record in records]
        except SQLAlchemyError as e:
            logger.error(f"Failed to query alert history: {e}")
            return []

    @property
    def events(self) -> List[AlertEvent]:
        """All events, newest first"""
        return self.get_events()

    def get_statistics(self, time_range: float = 86400, now: Optional[float] = None) -> Dict[AlertType, int]:
        """Number of events per type triggered within ``time_range`` seconds"""
        now = time.time() if now is None else now
        cutoff = now - time_range
        stats = {alert_type: 0 for alert_type in AlertType}
        for event in self.get_events():
            if event.triggered_at > cutoff:
                stats[event.alert_type] += 1
        return stats

    def clear_all_events(self) -> None:
        """Delete every event"""
        with self._lock:
            try:
                with session_scope(self._session_factory) as db:
                    db.query(AlertEventRecord).delete()
                logger.info("Alert history cleared")
            except SQLAlchemyError as e:
                logger.error(f"Failed to clear alert history: {e}")

    def cleanup_old_events(self, now: Optional[float] = None) -> None:
        """Apply the age and count limits"""
        with self._lock:
            try:
                with session_scope(self._session_factory) as db:
                    self._enforce_retention(db, now=time.time() if now is None else now)
            except SQLAlchemyError as e:
                logger.error(f"Failed to clean up alert history: {e}")

    def _enforce_retention(self, db, now: float) -> None:
        cutoff = now - self.retention_seconds
        expired = (
            db.query(AlertEventRecord)
            .filter(AlertEventRecord.triggered_at < cutoff)
            .delete(synchronize_session=False)
        )

        overflow_ids = [
            row.id for row in
            db.query(AlertEventRecord.id)
            .order_by(AlertEventRecord.triggered_at.desc())
            .offset(self.max_events)
            .all()
        ]
        if overflow_ids:
            db.query(AlertEventRecord).filter(AlertEventRecord.id.in_(overflow_ids)).delete(synchronize_session=False)

        if expired or overflow_ids:
            logger.debug(f"Alert history trimmed: {expired} expired, {len(overflow_ids)} over capacity")

    # Export

    @staticmethod
    def export_csv(events: List[AlertEvent]) -> str:
        """Comma separated export, newest first"""
        ordered = sorted(events, key=lambda e: e.triggered_at, reverse=True)
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for event in ordered:
            duration = event.duration
            writer.writerow([
                _iso(event.triggered_at),
                event.device_name,
                event.alert_type.value.capitalize(),
                event.severity.value.capitalize(),
                event.message,
                f"{event.value:.1f}",
                f"{event.threshold:.1f}",
                "Resolved" if event.is_resolved else "Active",
                "" if duration is None else f"{duration:.0f}",
            ])
        return buffer.getvalue().rstrip("\n")

    @staticmethod
    def export_json(events: List[AlertEvent]) -> str:
        """JSON array export, newest first"""
        ordered = sorted(events, key=lambda e: e.triggered_at, reverse=True)
        return json.dumps([event.model_dump(mode="json") for event in ordered], indent=2, sort_keys=True)
