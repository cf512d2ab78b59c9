import time
import uuid
import socket
import logging
import threading
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .alert_manager import LOCAL_DEVICE_ID
from .config import DEFAULT_PORT
from .database import session_scope
from .models import DeviceRecord
from .schemas import ConnectionType, Device, DeviceMetrics, DeviceStatus, MetricSnapshot

logger = logging.getLogger(__name__)


def make_local_device(port: int = DEFAULT_PORT) -> Device:
    """Device entry for this host"""
    hostname = socket.gethostname()
    return Device(
        id=LOCAL_DEVICE_ID,
        name=hostname.split(".")[0] or "This host",
        hostname=hostname,
        address="127.0.0.1",
        port=port,
        status=DeviceStatus.ONLINE,
        connection_type=ConnectionType.LOCAL,
    )


class DeviceRegistry:
    """Known devices and the latest metrics fetched for each.

    The device list is persisted in the ``devices`` table; fetched metrics
    live in memory only.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, local_port: int = DEFAULT_PORT):
        self._session_factory = session_factory
        self._lock = threading.RLock()
        self._devices: List[Device] = []
        self._metrics: Dict[str, DeviceMetrics] = {}

        self._load()
        if not any(d.is_local for d in self._devices):
            self._devices.insert(0, make_local_device(local_port))
            self._save()
            logger.info("Local device registered")

    @property
    def devices(self) -> List[Device]:
        with self._lock:
            return [d.model_copy() for d in self._devices]

    def get_device(self, device_id: str) -> Optional[Device]:
        """Copy of one device, or None"""
        with self._lock:
            device = self._find(device_id)
            return device.model_copy() if device else None

    def add_device(self, device: Device) -> Device:
        """Add a remote device, merging into a known entry with the same hostname"""
        with self._lock:
            if self._find(device.id) is not None:
                raise ValueError(f"Device {device.id} already exists")
            existing = self._find_by_hostname(device.hostname)
            if existing is not None:
                existing.name = device.name
                existing.address = device.address
                existing.port = device.port
                self._save()
                logger.info(f"Device updated: {existing.full_name}")
                return existing.model_copy()
            self._devices.append(device)
            self._save()
        logger.info(f"Device added: {device.full_name}")
        return device

    def remove_device(self, device_id: str) -> bool:
        """Remove a remote device; the local device cannot be removed"""
        with self._lock:
            device = self._find(device_id)
            if device is None or device.is_local:
                return False
            self._devices.remove(device)
            self._metrics.pop(device_id, None)
            self._save()
        logger.info(f"Device removed: {device.full_name}")
        return True

    def update_device(self, device: Device) -> bool:
        """Replace a device with the same id"""
        with self._lock:
            for index, existing in enumerate(self._devices):
                if existing.id == device.id:
                    self._devices[index] = device
                    self._save()
                    return True
        return False

    def toggle_device_enabled(self, device_id: str) -> bool:
        """Flip whether a device is polled"""
        with self._lock:
            device = self._find(device_id)
            if device is None:
                return False
            device.is_enabled = not device.is_enabled
            self._save()
            logger.info(f"Device {device.name} {'enabled' if device.is_enabled else 'disabled'}")
            return True

    def device_seen(self, hostname: str, address: str, port: int = DEFAULT_PORT,
                    name: Optional[str] = None) -> Device:
        """Insert or refresh a remote device found by discovery or added manually"""
        now = time.time()
        with self._lock:
            device = self._find_by_hostname(hostname)
            if device is not None:
                device.address = address
                device.port = port
                device.last_seen = now
                device.status = DeviceStatus.ONLINE
                self._save()
                return device.model_copy()

            device = Device(
                id=str(uuid.uuid4()),
                name=name or hostname.split(".")[0],
                hostname=hostname,
                address=address,
                port=port,
                last_seen=now,
                status=DeviceStatus.ONLINE,
                connection_type=ConnectionType.REMOTE,
            )
            self._devices.append(device)
            self._save()
        logger.info(f"Device discovered: {device.full_name} at {address}:{port}")
        return device.model_copy()

    def mark_online(self, device_id: str, now: Optional[float] = None) -> None:
        """Mark a device reachable and refresh its last seen time"""
        with self._lock:
            device = self._find(device_id)
            if device is None:
                return
            device.status = DeviceStatus.ONLINE
            device.last_seen = time.time() if now is None else now

    def mark_offline(self, device_id: str) -> None:
        """Mark a device unreachable; its last metrics are kept"""
        with self._lock:
            device = self._find(device_id)
            if device is None or device.status == DeviceStatus.OFFLINE:
                return
            device.status = DeviceStatus.OFFLINE
        logger.warning(f"Device offline: {device.full_name}")

    def enabled_devices(self) -> List[Device]:
        """Devices that should be polled"""
        with self._lock:
            return [d.model_copy() for d in self._devices if d.is_enabled]

    def online_devices(self) -> List[Device]:
        """Enabled devices that answered their last poll"""
        with self._lock:
            return [d.model_copy() for d in self._devices if d.is_enabled and d.status == DeviceStatus.ONLINE]

    # Metrics

    def record_metrics(self, device: Device, snapshot: MetricSnapshot, fetched_at: Optional[float] = None) -> None:
        """Keep the latest snapshot fetched for a device"""
        with self._lock:
            self._metrics[device.id] = DeviceMetrics(
                device_id=device.id,
                device_name=device.name,
                hostname=device.hostname,
                snapshot=snapshot,
                fetched_at=time.time() if fetched_at is None else fetched_at,
            )

    def get_metrics(self, device_id: str) -> Optional[DeviceMetrics]:
        with self._lock:
            return self._metrics.get(device_id)

    def all_metrics(self) -> List[DeviceMetrics]:
        """Latest metrics of every device, in device order"""
        with self._lock:
            return [self._metrics[d.id] for d in self._devices if d.id in self._metrics]

    def _find(self, device_id: str) -> Optional[Device]:
        for device in self._devices:
            if device.id == device_id:
                return device
        return None

    def _find_by_hostname(self, hostname: str) -> Optional[Device]:
        for device in self._devices:
            if not device.is_local and device.hostname == hostname:
                return device
        return None

    # Persistence

    def _load(self) -> None:
        if self._session_factory is None:
            return
        try:
            with session_scope(self._session_factory) as db:
                records = db.query(DeviceRecord).order_by(DeviceRecord.position).all()
                self._devices = [Device.model_validate(record) for record in records]
            logger.info(f"Loaded {len(self._devices)} device(s)")
        except SQLAlchemyError as e:
            logger.error(f"Failed to load devices: {e}")
            self._devices = []

    def _save(self) -> None:
        if self._session_factory is None:
            return
        try:
            with session_scope(self._session_factory) as db:
                db.query(DeviceRecord).delete()
                for position, device in enumerate(self._devices):
                    db.add(DeviceRecord(position=position, **device.model_dump(mode="json")))
        except SQLAlchemyError as e:
            logger.error(f"Failed to save devices: {e}")
