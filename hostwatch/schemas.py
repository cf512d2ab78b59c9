import time
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AlertType(str, Enum):
    MEMORY = "memory"
    CPU = "cpu"
    DISK = "disk"
    NETWORK = "network"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class NetworkStatus(str, Enum):
    NORMAL = "normal"
    DOWN = "down"


class DeviceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"
    ERROR = "error"


class ConnectionType(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


# Metric readings. Field names are the wire format shared with peers.

class CpuMetrics(BaseModel):
    """CPU usage reading"""
    model_config = ConfigDict(frozen=True)

    usage_percent: float = Field(0.0, ge=0, description="CPU usage (%)")
    load1: float = 0.0
    load5: float = 0.0
    load15: float = 0.0


class MemoryMetrics(BaseModel):
    """Memory usage reading"""
    model_config = ConfigDict(frozen=True)

    total_bytes: int = Field(0, ge=0)
    used_bytes: int = Field(0, ge=0)
    used_percent: float = Field(0.0, ge=0, description="Memory used (%)")
    compressed_bytes: Optional[int] = None
    swap_used_bytes: Optional[int] = None


class DiskMetrics(BaseModel):
    """Root volume usage reading"""
    model_config = ConfigDict(frozen=True)

    used_percent: float = Field(0.0, ge=0, description="Disk used (%)")


class NetworkMetrics(BaseModel):
    """Network reachability reading"""
    model_config = ConfigDict(frozen=True)

    status: NetworkStatus = NetworkStatus.NORMAL
    last_ok_timestamp: float = 0.0


class MetricSnapshot(BaseModel):
    """One consistent reading of all metrics at a single timestamp"""
    model_config = ConfigDict(frozen=True)

    timestamp: float
    memory: MemoryMetrics
    cpu: CpuMetrics
    disk: DiskMetrics
    network: NetworkMetrics


class MetricSeries(BaseModel):
    memory_used_percent: List[float] = Field(default_factory=list)
    cpu_usage_percent: List[float] = Field(default_factory=list)
    disk_used_percent: List[float] = Field(default_factory=list)
    network_status: List[str] = Field(default_factory=list)


# Alert history

class AlertEvent(BaseModel):
    """Alert history entry"""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    device_id: str
    device_name: str
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    value: float
    threshold: float
    triggered_at: float
    resolved_at: Optional[float] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    @property
    def duration(self) -> Optional[float]:
        if self.resolved_at is None:
            return None
        return self.resolved_at - self.triggered_at


# Devices

class Device(BaseModel):
    """Monitored agent instance"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    hostname: str
    address: str
    port: int = 17890
    is_enabled: bool = True
    last_seen: float = Field(default_factory=time.time)
    status: DeviceStatus = DeviceStatus.UNKNOWN
    connection_type: ConnectionType = ConnectionType.REMOTE

    @property
    def is_local(self) -> bool:
        return self.connection_type == ConnectionType.LOCAL

    @property
    def base_url(self) -> str:
        return f"http://{self.address}:{self.port}"

    @property
    def full_name(self) -> str:
        return f"{self.name} ({self.hostname})"


class DeviceMetrics(BaseModel):
    """Most recent snapshot retrieved for a device"""
    device_id: str
    device_name: str
    hostname: str
    snapshot: MetricSnapshot
    fetched_at: float

    def is_stale(self, now: Optional[float] = None, max_age: float = 30.0) -> bool:
        """True if the metrics are older than ``max_age`` seconds"""
        now = time.time() if now is None else now
        return now - self.fetched_at > max_age


# HTTP API responses

class StatusMetrics(BaseModel):
    memory: MemoryMetrics
    cpu: CpuMetrics
    disk: DiskMetrics
    network: NetworkMetrics


class AlertItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: AlertType
    status: str
    since_timestamp: float = Field(0.0, alias="sinceTimestamp")
    next_sound_timestamp: float = Field(0.0, alias="nextSoundTimestamp")


class StatusAlerts(BaseModel):
    active: bool
    items: List[AlertItem]


class StatusResponse(BaseModel):
    """GET /api/v1/status"""
    timestamp: float
    metrics: StatusMetrics
    alerts: StatusAlerts


class SeriesBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    memory_used_percent: List[float] = Field(alias="memoryUsedPercent")
    cpu_usage_percent: List[float] = Field(alias="cpuUsagePercent")
    disk_used_percent: List[float] = Field(alias="diskUsedPercent")
    network_status: List[str] = Field(alias="networkStatus")


class SeriesResponse(BaseModel):
    """GET /api/v1/series"""
    timestamp: float
    series: SeriesBody


class ThresholdsBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    memory_percent: float = Field(alias="memoryPercent")
    cpu_percent: float = Field(alias="cpuPercent")
    disk_percent: float = Field(alias="diskPercent")


class ConfigResponse(BaseModel):
    """GET /api/v1/config"""
    model_config = ConfigDict(populate_by_name=True)

    refresh_interval_seconds: int = Field(alias="refreshIntervalSeconds")
    thresholds: ThresholdsBody
    network_probe_target: str = Field(alias="networkProbeTarget")
    port: int
