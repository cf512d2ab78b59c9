import logging

from prometheus_client import start_http_server, Gauge, Counter

from .schemas import MetricSnapshot, NetworkStatus

logger = logging.getLogger(__name__)

# Prometheus metrics for the local host
CPU_USAGE = Gauge("hostwatch_cpu_usage_percent", "CPU usage (%)")
MEMORY_USED = Gauge("hostwatch_memory_used_percent", "Memory used (%)")
DISK_USED = Gauge("hostwatch_disk_used_percent", "Disk used (%)")
NETWORK_UP = Gauge("hostwatch_network_up", "Network reachable (1) or down (0)")

ALERT_ACTIVE = Gauge(
    "hostwatch_alert_active",
    "Alert currently active (1) or normal (0)",
    ["device", "alert_type"],
)
POLL_FAILURES = Counter(
    "hostwatch_peer_poll_failures",
    "Failed status polls against peer devices",
    ["device"],
)


def record_snapshot(snapshot: MetricSnapshot) -> None:
    """Export the local snapshot to the gauges"""
    CPU_USAGE.set(snapshot.cpu.usage_percent)
    MEMORY_USED.set(snapshot.memory.used_percent)
    DISK_USED.set(snapshot.disk.used_percent)
    NETWORK_UP.set(1 if snapshot.network.status == NetworkStatus.NORMAL else 0)


def set_alert_active(device_id: str, alert_type: str, active: bool) -> None:
    """Export whether an alert is active for a device"""
    ALERT_ACTIVE.labels(device=device_id, alert_type=alert_type).set(1 if active else 0)


def record_poll_failure(device_id: str) -> None:
    """Count one failed poll of a peer"""
    POLL_FAILURES.labels(device=device_id).inc()


def start_exporter(port: int) -> bool:
    """Start the Prometheus exporter; port 0 disables it"""
    if not port:
        return False
    try:
        start_http_server(port)
        logger.info(f"Prometheus exporter started on port {port}")
        return True
    except OSError as e:
        logger.error(f"Failed to start Prometheus exporter on port {port}: {e}")
        return False
