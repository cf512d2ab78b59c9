import json
import logging
import secrets
import string
import threading
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import session_scope
from .models import SettingEntry

logger = logging.getLogger(__name__)

VALID_REFRESH_INTERVALS = (5, 10, 30)
MIN_THRESHOLD_PERCENT, MAX_THRESHOLD_PERCENT = 0.0, 100.0
MIN_CONSECUTIVE_SAMPLES, MAX_CONSECUTIVE_SAMPLES = 1, 10
MIN_ALERT_REPEAT_MINUTES, MAX_ALERT_REPEAT_MINUTES = 1, 60
MIN_PORT, MAX_PORT = 1024, 65535

TOKEN_LENGTH = 32
TOKEN_ALPHABET = string.ascii_letters + string.digits

DEFAULTS: Dict[str, Any] = {
    "refresh_interval_seconds": 5,
    "memory_threshold_percent": 85.0,
    "cpu_threshold_percent": 90.0,
    "disk_threshold_percent": 90.0,
    "consecutive_samples_to_trigger": 2,
    "alert_repeat_minutes": 3,
    "network_probe_target": "gateway",
    "http_server_enabled": True,
    "http_server_port": 17890,
}


def generate_token() -> str:
    """Random alphanumeric shared secret"""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def _clamp(value, low, high):
    return max(low, min(high, value))


class SettingsStore:
    """Typed, validated settings persisted in the settings table.

    Values are cached in memory and written through on every change. A failing
    database never prevents reads: the store falls back to its defaults.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, initial_token: str = ""):
        self._session_factory = session_factory
        self._lock = threading.RLock()
        self._values: Dict[str, Any] = dict(DEFAULTS)
        self._load()

        if not self.get_value("http_server_token"):
            self.set_value("http_server_token", initial_token or generate_token())

    # Generic access

    def get_value(self, key: str, default: Any = None) -> Any:
        """Stored value for a key, or the default"""
        with self._lock:
            return self._values.get(key, default)

    def set_value(self, key: str, value: Any) -> None:
        """Store and persist a value"""
        with self._lock:
            self._values[key] = value
            self._save(key, value)

    # Refresh

    @property
    def refresh_interval_seconds(self) -> int:
        value = self.get_value("refresh_interval_seconds")
        return value if value in VALID_REFRESH_INTERVALS else DEFAULTS["refresh_interval_seconds"]

    @refresh_interval_seconds.setter
    def refresh_interval_seconds(self, value: int) -> None:
        if value not in VALID_REFRESH_INTERVALS:
            logger.warning(f"Invalid refresh interval {value}, using {DEFAULTS['refresh_interval_seconds']}")
            value = DEFAULTS["refresh_interval_seconds"]
        self.set_value("refresh_interval_seconds", int(value))

    # Thresholds

    @property
    def memory_threshold_percent(self) -> float:
        return float(self.get_value("memory_threshold_percent"))

    @memory_threshold_percent.setter
    def memory_threshold_percent(self, value: float) -> None:
        self.set_value("memory_threshold_percent", _clamp(float(value), MIN_THRESHOLD_PERCENT, MAX_THRESHOLD_PERCENT))

    @property
    def cpu_threshold_percent(self) -> float:
        return float(self.get_value("cpu_threshold_percent"))

    @cpu_threshold_percent.setter
    def cpu_threshold_percent(self, value: float) -> None:
        self.set_value("cpu_threshold_percent", _clamp(float(value), MIN_THRESHOLD_PERCENT, MAX_THRESHOLD_PERCENT))

    @property
    def disk_threshold_percent(self) -> float:
        return float(self.get_value("disk_threshold_percent"))

    @disk_threshold_percent.setter
    def disk_threshold_percent(self, value: float) -> None:
        self.set_value("disk_threshold_percent", _clamp(float(value), MIN_THRESHOLD_PERCENT, MAX_THRESHOLD_PERCENT))

    # Alert behaviour

    @property
    def consecutive_samples_to_trigger(self) -> int:
        return int(self.get_value("consecutive_samples_to_trigger"))

    @consecutive_samples_to_trigger.setter
    def consecutive_samples_to_trigger(self, value: int) -> None:
        self.set_value(
            "consecutive_samples_to_trigger",
            _clamp(int(value), MIN_CONSECUTIVE_SAMPLES, MAX_CONSECUTIVE_SAMPLES),
        )

    @property
    def alert_repeat_minutes(self) -> int:
        return int(self.get_value("alert_repeat_minutes"))

    @alert_repeat_minutes.setter
    def alert_repeat_minutes(self, value: int) -> None:
        self.set_value("alert_repeat_minutes", _clamp(int(value), MIN_ALERT_REPEAT_MINUTES, MAX_ALERT_REPEAT_MINUTES))

    # Network probe

    @property
    def network_probe_target(self) -> str:
        return self.get_value("network_probe_target") or DEFAULTS["network_probe_target"]

    @network_probe_target.setter
    def network_probe_target(self, value: str) -> None:
        self.set_value("network_probe_target", value.strip() or DEFAULTS["network_probe_target"])

    # HTTP server

    @property
    def http_server_enabled(self) -> bool:
        return bool(self.get_value("http_server_enabled"))

    @http_server_enabled.setter
    def http_server_enabled(self, value: bool) -> None:
        self.set_value("http_server_enabled", bool(value))

    @property
    def http_server_port(self) -> int:
        return int(self.get_value("http_server_port"))

    @http_server_port.setter
    def http_server_port(self, value: int) -> None:
        self.set_value("http_server_port", _clamp(int(value), MIN_PORT, MAX_PORT))

    @property
    def http_server_token(self) -> str:
        return self.get_value("http_server_token", "")

    @http_server_token.setter
    def http_server_token(self, value: str) -> None:
        if not value:
            raise ValueError("HTTP server token must not be empty")
        self.set_value("http_server_token", value)

    def regenerate_token(self) -> str:
        """Replace the token with a fresh random one"""
        token = generate_token()
        self.http_server_token = token
        logger.info("HTTP server token regenerated")
        return token

    def reset_to_defaults(self) -> None:
        """Restore every setting except the token"""
        with self._lock:
            for key, value in DEFAULTS.items():
                self.set_value(key, value)
        logger.info("Settings reset to defaults")

    def threshold_for(self, alert_type) -> float:
        """Threshold percent for a metric alert type; network has none"""
        alert_type = getattr(alert_type, "value", alert_type)
        return {
            "memory": self.memory_threshold_percent,
            "cpu": self.cpu_threshold_percent,
            "disk": self.disk_threshold_percent,
        }.get(alert_type, 0.0)

    # Persistence

    def _load(self) -> None:
        if self._session_factory is None:
            return
        try:
            with session_scope(self._session_factory) as db:
                for entry in db.query(SettingEntry).all():
                    try:
                        self._values[entry.key] = json.loads(entry.value)
                    except ValueError:
                        logger.warning(f"Ignoring unreadable setting {entry.key}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to load settings, using defaults: {e}")

    def _save(self, key: str, value: Any) -> None:
        if self._session_factory is None:
            return
        try:
            with session_scope(self._session_factory) as db:
                db.merge(SettingEntry(key=key, value=json.dumps(value)))
        except (SQLAlchemyError, TypeError) as e:
            logger.error(f"Failed to save setting {key}: {e}")
