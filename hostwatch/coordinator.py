import time
import socket
import asyncio
import logging
from typing import Optional

from . import metrics
from .alert_manager import AlertEngine, LOCAL_DEVICE_ID
from .metric_store import MetricStore
from .samplers import CpuSampler, MemorySampler, DiskSampler, NetworkSampler
from .schemas import MetricSnapshot
from .settings import SettingsStore

logger = logging.getLogger(__name__)


class SamplingCoordinator:
    """Drives the local samplers on the configured refresh interval.

    Each tick produces one snapshot that is stored, exported to Prometheus and
    evaluated by the alert engine for the local device. Ticks never overlap.
    """

    def __init__(self, settings: SettingsStore, store: MetricStore, engine: AlertEngine,
                 cpu_sampler: Optional[CpuSampler] = None,
                 memory_sampler: Optional[MemorySampler] = None,
                 disk_sampler: Optional[DiskSampler] = None,
                 network_sampler: Optional[NetworkSampler] = None,
                 device_name: Optional[str] = None):
        self.settings = settings
        self.store = store
        self.engine = engine
        self.cpu_sampler = cpu_sampler or CpuSampler()
        self.memory_sampler = memory_sampler or MemorySampler()
        self.disk_sampler = disk_sampler or DiskSampler()
        self.network_sampler = network_sampler or NetworkSampler()
        self.device_name = device_name or socket.gethostname()

        self.is_running = False
        self._task: Optional[asyncio.Task] = None
        self._tick_lock = asyncio.Lock()
        self._generation = 0
        self._current_interval: Optional[int] = None
        self._probe: Optional[asyncio.Future] = None

    def start(self) -> None:
        """Start sampling; must be called from a running event loop"""
        if self.is_running:
            logger.warning("Sampling coordinator is already running")
            return

        self.is_running = True
        self._generation += 1
        self._current_interval = None
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation))
        logger.info("Sampling coordinator started")

    def stop(self) -> None:
        """Stop sampling and drop any tick still in flight"""
        if not self.is_running:
            return

        self.is_running = False
        # Results of a probe still in flight belong to the old generation
        self._generation += 1
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info("Sampling coordinator stopped")

    def restart(self) -> None:
        self.stop()
        self.start()

    async def sample_now(self) -> Optional[MetricSnapshot]:
        """Run one tick immediately"""
        return await self._tick(self._generation)

    async def _run(self, generation: int) -> None:
        while self.is_running and generation == self._generation:
            interval = self.settings.refresh_interval_seconds
            if self._current_interval is not None and interval != self._current_interval:
                logger.info(f"Sampling rescheduled: {self._current_interval}s -> {interval}s")
            self._current_interval = interval

            try:
                await self._tick(generation)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Sampling tick failed: {e}")

            await asyncio.sleep(interval)

    async def _tick(self, generation: int) -> Optional[MetricSnapshot]:
        async with self._tick_lock:
            timestamp = time.time()
            probe = asyncio.ensure_future(self.network_sampler.sample(self.settings.network_probe_target))
            self._probe = probe

            cpu = self.cpu_sampler.sample()
            memory = self.memory_sampler.sample()
            disk = self.disk_sampler.sample()
            # Cancelling the loop leaves the probe running to completion
            network = await asyncio.shield(probe)

            if generation != self._generation:
                logger.debug("Discarding sample completed after stop")
                return None

            snapshot = MetricSnapshot(
                timestamp=timestamp,
                memory=memory,
                cpu=cpu,
                disk=disk,
                network=network,
            )
            self.store.add_snapshot(snapshot)
            metrics.record_snapshot(snapshot)
            self.engine.evaluate(snapshot, LOCAL_DEVICE_ID, self.device_name, now=timestamp)
            return snapshot
