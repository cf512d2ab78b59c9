import time
import socket
import asyncio
import logging
from typing import Optional, Tuple

import psutil

from .schemas import CpuMetrics, MemoryMetrics, DiskMetrics, NetworkMetrics, NetworkStatus

logger = logging.getLogger(__name__)

GATEWAY_TARGET = "gateway"
PROBE_PORTS = (80, 443)
PROBE_TIMEOUT = 2.0
REQUIRED_FAILURES = 2


class CpuSampler:
    """CPU usage and load averages"""

    def __init__(self):
        # Warmup: the first non-blocking call always reports 0.0
        try:
            psutil.cpu_percent(interval=None)
        except Exception as e:
            logger.warning(f"CPU sampler warmup failed: {e}")

    def sample(self) -> CpuMetrics:
        """Current CPU usage and load averages"""
        try:
            usage = float(psutil.cpu_percent(interval=None))
        except Exception as e:
            logger.warning(f"CPU usage unavailable: {e}")
            usage = 0.0

        load1, load5, load15 = self._load_averages()
        return CpuMetrics(
            usage_percent=max(0.0, min(100.0, usage)),
            load1=load1,
            load5=load5,
            load15=load15,
        )

    def _load_averages(self) -> Tuple[float, float, float]:
        try:
            load1, load5, load15 = psutil.getloadavg()
            return float(load1), float(load5), float(load15)
        except Exception as e:
            logger.warning(f"Load averages unavailable: {e}")
            return 0.0, 0.0, 0.0


class MemorySampler:
    """Physical memory and swap usage"""

    def sample(self) -> MemoryMetrics:
        """Current memory and swap usage"""
        try:
            memory = psutil.virtual_memory()
        except Exception as e:
            logger.warning(f"Memory statistics unavailable: {e}")
            return MemoryMetrics(total_bytes=0, used_bytes=0, used_percent=0.0)

        total = int(memory.total)
        used = max(0, total - int(memory.available))
        used_percent = used / total * 100 if total > 0 else 0.0

        return MemoryMetrics(
            total_bytes=total,
            used_bytes=used,
            used_percent=used_percent,
            compressed_bytes=None,
            swap_used_bytes=self._swap_used(),
        )

    def _swap_used(self) -> Optional[int]:
        try:
            return int(psutil.swap_memory().used)
        except Exception as e:
            logger.debug(f"Swap statistics unavailable: {e}")
            return None


class DiskSampler:
    """Used percentage of the root volume"""

    def __init__(self, path: str = "/"):
        self.path = path

    def sample(self) -> DiskMetrics:
        """Current usage of the monitored volume"""
        try:
            disk = psutil.disk_usage(self.path)
            if disk.total <= 0:
                return DiskMetrics(used_percent=0.0)
            return DiskMetrics(used_percent=(disk.total - disk.free) / disk.total * 100)
        except Exception as e:
            logger.warning(f"Disk usage unavailable for {self.path}: {e}")
            return DiskMetrics(used_percent=0.0)


class NetworkSampler:
    """Network reachability with failure debouncing.

    A single failed probe is reported as normal; ``REQUIRED_FAILURES``
    consecutive failures are needed before the reading turns ``down``.
    ``last_ok_timestamp`` always carries the time of the last successful probe
    so a down reading shows how stale connectivity is (0 if never reachable).
    """

    def __init__(self, required_failures: int = REQUIRED_FAILURES, timeout: float = PROBE_TIMEOUT):
        self.required_failures = required_failures
        self.timeout = timeout
        self.consecutive_failures = 0
        self.last_ok_timestamp = 0.0

    async def sample(self, target: str = GATEWAY_TARGET) -> NetworkMetrics:
        """Probe connectivity and apply the failure debounce"""
        try:
            reachable = await self.check_connectivity(target)
        except Exception as e:
            logger.warning(f"Network probe for {target} failed: {e}")
            reachable = False

        if reachable:
            self.consecutive_failures = 0
            self.last_ok_timestamp = time.time()
            return NetworkMetrics(status=NetworkStatus.NORMAL, last_ok_timestamp=self.last_ok_timestamp)

        self.consecutive_failures += 1
        if self.consecutive_failures >= self.required_failures:
            logger.warning(f"Network down: {self.consecutive_failures} consecutive probe failures for {target}")
            return NetworkMetrics(status=NetworkStatus.DOWN, last_ok_timestamp=self.last_ok_timestamp)

        return NetworkMetrics(status=NetworkStatus.NORMAL, last_ok_timestamp=self.last_ok_timestamp)

    def reset(self) -> None:
        self.consecutive_failures = 0

    async def check_connectivity(self, target: str) -> bool:
        """Single probe of the gateway or a host"""
        if target == GATEWAY_TARGET:
            return await asyncio.wait_for(asyncio.to_thread(self._interface_available), timeout=5)
        return await self._check_host(target)

    async def _check_host(self, host: str) -> bool:
        for port in PROBE_PORTS:
            if await self._try_connect(host, port):
                return True
        return False

    async def _try_connect(self, host: str, port: int) -> bool:
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Connect to {host}:{port} failed: {e}")
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    @staticmethod
    def _interface_available() -> bool:
        """True when a non-loopback interface is up and has an address"""
        stats = psutil.net_if_stats()
        addresses = psutil.net_if_addrs()
        for name, stat in stats.items():
            if not stat.isup or name.startswith("lo"):
                continue
            for address in addresses.get(name, []):
                if address.family in (socket.AF_INET, socket.AF_INET6) and not address.address.startswith("127."):
                    return True
        return False
