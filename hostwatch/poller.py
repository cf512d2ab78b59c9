import time
import socket
import asyncio
import logging
from typing import Dict, Iterable, List, Optional

import aiohttp

from . import metrics
from .alert_manager import AlertEngine
from .config import DEFAULT_PORT, DEFAULT_DISCOVERY_HOSTNAMES
from .devices import DeviceRegistry
from .metric_store import MetricStore
from .schemas import Device, MetricSnapshot, StatusResponse
from .settings import SettingsStore

logger = logging.getLogger(__name__)

STATUS_PATH = "/api/v1/status"


def snapshot_from_status(data: dict) -> MetricSnapshot:
    """Build a snapshot from a peer's /api/v1/status body"""
    status = StatusResponse.model_validate(data)
    return MetricSnapshot(
        timestamp=status.timestamp,
        memory=status.metrics.memory,
        cpu=status.metrics.cpu,
        disk=status.metrics.disk,
        network=status.metrics.network,
    )


class PeriodicTask:
    """asyncio loop calling ``run_once`` every ``interval`` seconds"""

    name = "periodic task"

    def __init__(self, interval: float):
        self.interval = interval
        self.is_running = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        """Start the loop; must be called from a running event loop"""
        if self.is_running:
            logger.warning(f"{self.name} is already running")
            return
        self.is_running = True
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"{self.name} started (every {self.interval}s)")

    def stop(self) -> None:
        """Cancel the loop"""
        if not self.is_running:
            return
        self.is_running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info(f"{self.name} stopped")

    async def _run(self) -> None:
        while self.is_running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{self.name} iteration failed: {e}")
            await asyncio.sleep(self.interval)

    async def run_once(self) -> None:
        raise NotImplementedError


class RemotePoller(PeriodicTask):
    """Fetches the status of every enabled device concurrently"""

    name = "Remote poller"

    def __init__(self, registry: DeviceRegistry, engine: AlertEngine, store: MetricStore,
                 settings: SettingsStore, interval: float = 5, timeout: float = 3.0):
        super().__init__(interval)
        self.registry = registry
        self.engine = engine
        self.store = store
        self.settings = settings
        self.timeout = timeout
        self._last_evaluated: Dict[str, float] = {}

    async def run_once(self) -> None:
        await self.poll_once()

    async def poll_once(self) -> None:
        """Poll every enabled device once"""
        devices = self.registry.enabled_devices()
        if not devices:
            return
        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            await asyncio.gather(*(self._poll_device(session, device) for device in devices))

    async def _poll_device(self, session: aiohttp.ClientSession, device: Device) -> None:
        if device.is_local:
            # The coordinator already evaluates the local device
            snapshot = self.store.latest_snapshot
            if snapshot is not None:
                self.registry.record_metrics(device, snapshot)
                self.registry.mark_online(device.id)
            return

        try:
            snapshot = await self.fetch_status(session, device)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Failed to poll {device.full_name} at {device.base_url}: {e}")
            self.registry.mark_offline(device.id)
            metrics.record_poll_failure(device.id)
            return

        now = time.time()
        self.registry.record_metrics(device, snapshot, fetched_at=now)
        self.registry.mark_online(device.id, now=now)

        # Each peer sample is evaluated once
        last = self._last_evaluated.get(device.id)
        if last is not None and snapshot.timestamp <= last:
            logger.debug(f"Skipping evaluation of unchanged sample from {device.full_name}")
            return
        self._last_evaluated[device.id] = snapshot.timestamp
        self.engine.evaluate(snapshot, device.id, device.name, now=now)

    async def fetch_status(self, session: aiohttp.ClientSession, device: Device) -> MetricSnapshot:
        """Fetch a peer's status; non-200 responses raise ValueError"""
        headers = {"Authorization": f"Bearer {self.settings.http_server_token}"}
        async with session.get(f"{device.base_url}{STATUS_PATH}", headers=headers) as response:
            if response.status != 200:
                raise ValueError(f"unexpected status {response.status}")
            data = await response.json()
        return snapshot_from_status(data)


class DeviceDiscovery(PeriodicTask):
    """Probes well-known ``<name>.local`` hostnames for peer agents"""

    name = "Device discovery"

    def __init__(self, registry: DeviceRegistry, settings: SettingsStore,
                 hostnames: Optional[Iterable[str]] = None, interval: float = 15,
                 timeout: float = 2.0, port: int = DEFAULT_PORT):
        super().__init__(interval)
        self.registry = registry
        self.settings = settings
        self.timeout = timeout
        self.port = port

        own_name = socket.gethostname().split(".")[0].lower()
        names = DEFAULT_DISCOVERY_HOSTNAMES if hostnames is None else hostnames
        self.hostnames = [name for name in names if name.lower() != own_name]

    async def run_once(self) -> None:
        await self.discover_once()

    async def discover_once(self) -> List[Device]:
        """Probe every hostname once and register those that answer"""
        if not self.hostnames:
            return []

        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            results = await asyncio.gather(*(self.probe(session, name) for name in self.hostnames))

        found = []
        for name, reachable in zip(self.hostnames, results):
            if reachable:
                hostname = f"{name}.local"
                found.append(self.registry.device_seen(hostname, hostname, self.port, name=name))
        return found

    async def probe(self, session: aiohttp.ClientSession, name: str) -> bool:
        """True if the agent at ``<name>.local`` answers"""
        url = f"http://{name}.local:{self.port}{STATUS_PATH}"
        headers = {"Authorization": f"Bearer {self.settings.http_server_token}"}
        try:
            async with session.get(url, headers=headers) as response:
                return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Discovery probe {url} failed: {e}")
            return False
