import asyncio
import socket
from collections import namedtuple
from unittest.mock import patch

import pytest

from hostwatch.samplers import CpuSampler, DiskSampler, MemorySampler, NetworkSampler
from hostwatch.schemas import NetworkStatus

VirtualMemory = namedtuple("VirtualMemory", ["total", "available"])
SwapMemory = namedtuple("SwapMemory", ["used"])
DiskUsage = namedtuple("DiskUsage", ["total", "used", "free", "percent"])
IfStats = namedtuple("IfStats", ["isup"])
IfAddr = namedtuple("IfAddr", ["family", "address"])


@patch("hostwatch.samplers.psutil")
def test_cpu_sampler(mock_psutil):
    """CPU usage and load averages come from psutil"""
    mock_psutil.cpu_percent.return_value = 42.5
    mock_psutil.getloadavg.return_value = (1.5, 1.0, 0.5)

    metrics = CpuSampler().sample()

    assert metrics.usage_percent == 42.5
    assert (metrics.load1, metrics.load5, metrics.load15) == (1.5, 1.0, 0.5)
    # Warmup call plus the sample
    assert mock_psutil.cpu_percent.call_count == 2


@patch("hostwatch.samplers.psutil")
def test_cpu_sampler_degrades_on_error(mock_psutil):
    """CPU errors yield zero readings"""
    mock_psutil.cpu_percent.side_effect = OSError("no /proc")
    mock_psutil.getloadavg.side_effect = OSError("no loadavg")

    metrics = CpuSampler().sample()

    assert metrics.usage_percent == 0.0
    assert metrics.load1 == 0.0


@patch("hostwatch.samplers.psutil")
def test_memory_sampler(mock_psutil):
    """Memory usage is derived from total and available"""
    mock_psutil.virtual_memory.return_value = VirtualMemory(total=16_000, available=4_000)
    mock_psutil.swap_memory.return_value = SwapMemory(used=512)

    metrics = MemorySampler().sample()

    assert metrics.total_bytes == 16_000
    assert metrics.used_bytes == 12_000
    assert metrics.used_percent == pytest.approx(75.0)
    assert metrics.swap_used_bytes == 512
    assert metrics.compressed_bytes is None


@patch("hostwatch.samplers.psutil")
def test_memory_sampler_without_swap(mock_psutil):
    """Missing swap reads as zero"""
    mock_psutil.virtual_memory.return_value = VirtualMemory(total=8_000, available=8_000)
    mock_psutil.swap_memory.side_effect = RuntimeError("swap unavailable")

    metrics = MemorySampler().sample()

    assert metrics.used_percent == 0.0
    assert metrics.swap_used_bytes is None


@patch("hostwatch.samplers.psutil")
def test_disk_sampler(mock_psutil):
    """Disk usage counts reserved blocks as used"""
    mock_psutil.disk_usage.return_value = DiskUsage(total=1000, used=600, free=250, percent=70.6)

    metrics = DiskSampler("/data").sample()

    mock_psutil.disk_usage.assert_called_once_with("/data")
    # Reserved blocks count as used
    assert metrics.used_percent == pytest.approx(75.0)


@patch("hostwatch.samplers.psutil")
def test_disk_sampler_degrades_on_error(mock_psutil):
    """Disk errors yield a zero reading"""
    mock_psutil.disk_usage.side_effect = FileNotFoundError("/missing")
    assert DiskSampler("/missing").sample().used_percent == 0.0


def test_network_requires_two_failures():
    """Network goes down only after two failed probes"""
    sampler = NetworkSampler()
    with patch.object(NetworkSampler, "check_connectivity", return_value=False):
        first = asyncio.run(sampler.sample("example.com"))
        second = asyncio.run(sampler.sample("example.com"))

    assert first.status == NetworkStatus.NORMAL
    assert second.status == NetworkStatus.DOWN
    assert second.last_ok_timestamp == 0.0


def test_network_success_resets_failures():
    """A successful probe resets the failure count"""
    sampler = NetworkSampler()
    with patch.object(NetworkSampler, "check_connectivity", return_value=True):
        ok = asyncio.run(sampler.sample())
    with patch.object(NetworkSampler, "check_connectivity", return_value=False):
        asyncio.run(sampler.sample())
        down = asyncio.run(sampler.sample())

    assert ok.status == NetworkStatus.NORMAL
    assert ok.last_ok_timestamp > 0
    assert down.status == NetworkStatus.DOWN
    assert down.last_ok_timestamp == ok.last_ok_timestamp

    sampler.reset()
    assert sampler.consecutive_failures == 0


def test_network_probe_exception_counts_as_failure():
    """Probe exceptions count as failures"""
    sampler = NetworkSampler(required_failures=1)
    with patch.object(NetworkSampler, "check_connectivity", side_effect=OSError("boom")):
        metrics = asyncio.run(sampler.sample("example.com"))
    assert metrics.status == NetworkStatus.DOWN


def test_host_probe_falls_back_to_https():
    """Port 443 is tried when port 80 fails"""
    sampler = NetworkSampler()
    with patch.object(NetworkSampler, "_try_connect", side_effect=[False, True]) as mock_connect:
        assert asyncio.run(sampler.check_connectivity("example.com"))

    assert [c.args for c in mock_connect.call_args_list] == [("example.com", 80), ("example.com", 443)]


def test_host_probe_timeout():
    """A slow host probe times out"""
    sampler = NetworkSampler(timeout=0.01)

    async def never_connects(host, port):
        await asyncio.sleep(1)

    with patch("hostwatch.samplers.asyncio.open_connection", side_effect=never_connects):
        assert not asyncio.run(sampler.check_connectivity("example.com"))


@patch("hostwatch.samplers.psutil")
def test_gateway_check_uses_interfaces(mock_psutil):
    """The gateway check looks for an active interface"""
    mock_psutil.net_if_stats.return_value = {"lo": IfStats(True), "eth0": IfStats(True)}
    mock_psutil.net_if_addrs.return_value = {
        "lo": [IfAddr(socket.AF_INET, "127.0.0.1")],
        "eth0": [IfAddr(socket.AF_INET, "192.168.1.20")],
    }
    assert NetworkSampler._interface_available()

    mock_psutil.net_if_stats.return_value = {"lo": IfStats(True), "eth0": IfStats(False)}
    assert not NetworkSampler._interface_available()
