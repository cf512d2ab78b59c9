import time
import logging
import threading
from dataclasses import dataclass, asdict, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from . import metrics
from .alert_history import AlertHistory, generate_message
from .alert_sender import Notifier
from .schemas import AlertType, MetricSnapshot, NetworkStatus
from .settings import SettingsStore
from .silence import SilenceManager

logger = logging.getLogger(__name__)

LOCAL_DEVICE_ID = "local"
STATE_KEY = "alert_state"


class AlertState(str, Enum):
    NORMAL = "normal"
    ALERTING = "alerting"
    THROTTLED = "throttled"


@dataclass
class AlertStatus:
    """Alert state of one alert type on one device.

    ``since`` is the time the alert started and is kept while throttled;
    ``until`` is only set in the throttled state.
    """
    state: AlertState = AlertState.NORMAL
    since: Optional[float] = None
    until: Optional[float] = None
    consecutive_count: int = 0
    next_notify_at: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.state != AlertState.NORMAL

    def to_dict(self) -> Dict:
        """Serializable form used by save_state"""
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "AlertStatus":
        return cls(
            state=AlertState(data.get("state", AlertState.NORMAL.value)),
            since=data.get("since"),
            until=data.get("until"),
            consecutive_count=int(data.get("consecutive_count", 0)),
            next_notify_at=data.get("next_notify_at"),
        )


class AlertEngine:
    """Per-device alert state machine.

    A metric must violate its threshold for ``consecutive_samples_to_trigger``
    ticks before an alert starts. An active alert re-notifies every
    ``alert_repeat_minutes`` while the violation lasts and is resolved on the
    first non-violating tick.
    """

    def __init__(self, settings: SettingsStore, history: Optional[AlertHistory] = None,
                 silence: Optional[SilenceManager] = None, notifier: Optional[Notifier] = None):
        self.settings = settings
        self.history = history
        self.silence = silence
        self.notifier = notifier
        self._lock = threading.Lock()
        self._statuses: Dict[str, Dict[AlertType, AlertStatus]] = {}

    def evaluate(self, snapshot: MetricSnapshot, device_id: str = LOCAL_DEVICE_ID,
                 device_name: Optional[str] = None, now: Optional[float] = None) -> None:
        """Evaluate every alert type against one snapshot"""
        now = time.time() if now is None else now
        device_name = device_name or device_id

        checks = [
            (AlertType.MEMORY, snapshot.memory.used_percent),
            (AlertType.CPU, snapshot.cpu.usage_percent),
            (AlertType.DISK, snapshot.disk.used_percent),
        ]

        pending: List[Tuple[AlertType, str]] = []
        with self._lock:
            for alert_type, value in checks:
                threshold = self.settings.threshold_for(alert_type)
                message = self._evaluate_type(
                    device_id, device_name, alert_type, value > threshold, value, threshold, now
                )
                if message:
                    pending.append((alert_type, message))

            network_down = snapshot.network.status == NetworkStatus.DOWN
            message = self._evaluate_type(
                device_id, device_name, AlertType.NETWORK, network_down, 0.0, 0.0, now
            )
            if message:
                pending.append((AlertType.NETWORK, message))

        for alert_type, message in pending:
            self._notify(alert_type, device_name, message, now)

    def _evaluate_type(self, device_id: str, device_name: str, alert_type: AlertType,
                       violating: bool, value: float, threshold: float, now: float) -> Optional[str]:
        """Advance one status; returns a message when a notification is due"""
        status = self._statuses.setdefault(device_id, {}).setdefault(alert_type, AlertStatus())

        if not violating:
            if status.is_active:
                logger.info(f"{alert_type.value} alert recovered on {device_name}")
                metrics.set_alert_active(device_id, alert_type.value, False)
                if self.history is not None:
                    self.history.resolve_latest(device_id, alert_type, resolved_at=now)
            status.state = AlertState.NORMAL
            status.since = None
            status.until = None
            status.consecutive_count = 0
            status.next_notify_at = None
            return None

        status.consecutive_count += 1
        if status.consecutive_count < self.settings.consecutive_samples_to_trigger:
            return None

        repeat_seconds = self.settings.alert_repeat_minutes * 60

        if status.state == AlertState.NORMAL:
            status.state = AlertState.ALERTING
            status.since = now
            status.until = None
            status.next_notify_at = now + repeat_seconds
            logger.warning(f"{alert_type.value} alert triggered on {device_name}: {value:.1f} > {threshold:.1f}")
            metrics.set_alert_active(device_id, alert_type.value, True)
            if self.history is not None:
                event = self.history.record_alert(
                    device_id, device_name, alert_type, value, threshold, triggered_at=now
                )
                return event.message
            return generate_message(alert_type, value, threshold)

        if status.next_notify_at is None or now >= status.next_notify_at:
            status.next_notify_at = now + repeat_seconds
            status.state = AlertState.THROTTLED
            status.until = status.next_notify_at
            return generate_message(alert_type, value, threshold)

        return None

    def _notify(self, alert_type: AlertType, device_name: str, message: str, now: float) -> None:
        if self.silence is not None and self.silence.should_silence(now):
            logger.info(f"Notification silenced: {device_name} {alert_type.value}")
            return
        if self.notifier is None:
            return
        try:
            self.notifier.notify(alert_type.value, device_name, message)
        except Exception as e:
            logger.error(f"Alert notification failed: {e}")

    # Reads

    def get_alert_status(self, alert_type: AlertType, device_id: str = LOCAL_DEVICE_ID) -> AlertStatus:
        """Copy of the status of one alert type"""
        with self._lock:
            status = self._statuses.get(device_id, {}).get(AlertType(alert_type))
            return replace(status) if status else AlertStatus()

    def get_all_alert_statuses(self, device_id: str = LOCAL_DEVICE_ID) -> Dict[AlertType, AlertStatus]:
        """Copies of every status for a device, in alert type order"""
        with self._lock:
            statuses = self._statuses.get(device_id, {})
            return {
                alert_type: replace(statuses[alert_type]) if alert_type in statuses else AlertStatus()
                for alert_type in AlertType
            }

    def is_any_alert_active(self, device_id: str = LOCAL_DEVICE_ID) -> bool:
        """True if any alert type of the device is alerting or throttled"""
        with self._lock:
            return any(status.is_active for status in self._statuses.get(device_id, {}).values())

    def reset_all_alerts(self) -> None:
        """Return every device and type to normal without touching history"""
        with self._lock:
            for device_id, statuses in self._statuses.items():
                for alert_type in statuses:
                    metrics.set_alert_active(device_id, alert_type.value, False)
            self._statuses.clear()
        logger.info("All alert states reset")

    # Persistence

    def export_state(self) -> Dict[str, Dict[str, Dict]]:
        """Statuses keyed by device id and alert type value"""
        with self._lock:
            return {
                device_id: {alert_type.value: status.to_dict() for alert_type, status in statuses.items()}
                for device_id, statuses in self._statuses.items()
            }

    def restore_state(self, data: Optional[Dict]) -> None:
        """Replace statuses with an exported mapping"""
        if not isinstance(data, dict):
            return

        restored: Dict[str, Dict[AlertType, AlertStatus]] = {}
        for device_id, statuses in data.items():
            if not isinstance(statuses, dict):
                continue
            for type_value, status_data in statuses.items():
                try:
                    restored.setdefault(device_id, {})[AlertType(type_value)] = AlertStatus.from_dict(status_data)
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning(f"Ignoring unreadable alert state {device_id}/{type_value}: {e}")

        with self._lock:
            self._statuses = restored
            for device_id, statuses in restored.items():
                for alert_type, status in statuses.items():
                    metrics.set_alert_active(device_id, alert_type.value, status.is_active)
        logger.info(f"Alert state restored for {len(restored)} device(s)")

    def save_state(self) -> None:
        """Persist statuses to settings"""
        self.settings.set_value(STATE_KEY, self.export_state())

    def load_state(self) -> None:
        """Restore statuses saved by save_state"""
        self.restore_state(self.settings.get_value(STATE_KEY))
