import time
import secrets
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security.utils import get_authorization_scheme_param

from .alert_manager import AlertEngine, LOCAL_DEVICE_ID
from .metric_store import DEFAULT_CAPACITY, MetricStore, clamp_points
from .schemas import (
    AlertItem,
    ConfigResponse,
    SeriesBody,
    SeriesResponse,
    StatusAlerts,
    StatusMetrics,
    StatusResponse,
    ThresholdsBody,
)
from .settings import SettingsStore

logger = logging.getLogger(__name__)


def parse_points(value: Optional[str]) -> int:
    """Requested series length; missing or unparseable values fall back to 60"""
    try:
        points = int(value)
    except (TypeError, ValueError):
        return DEFAULT_CAPACITY
    return clamp_points(points)


def is_authorized(header: Optional[str], token: str) -> bool:
    """True if the header carries the token as a bearer credential"""
    if not header or not token:
        return False
    scheme, credentials = get_authorization_scheme_param(header)
    if scheme.lower() != "bearer" or not credentials:
        return False
    return secrets.compare_digest(credentials.strip().encode(), token.encode())


def create_app(settings: SettingsStore, store: MetricStore, engine: AlertEngine) -> FastAPI:
    """Build the read-only status API for the local device"""
    app = FastAPI(
        title="hostwatch",
        description="Host resource monitoring agent",
        version="1.0.0",
    )

    @app.middleware("http")
    async def require_bearer_token(request: Request, call_next):
        # Authentication is checked before method and path
        if not is_authorized(request.headers.get("authorization"), settings.http_server_token):
            logger.warning(f"Unauthorized request: {request.method} {request.url.path}")
            return JSONResponse(status_code=401, content={"detail": "Unauthorized"})
        if request.method != "GET":
            return JSONResponse(status_code=405, content={"detail": "Method Not Allowed"})
        return await call_next(request)

    @app.get("/api/v1/status", response_model=StatusResponse, response_model_by_alias=True)
    def get_status():
        """Latest snapshot and alert states"""
        snapshot = store.latest_snapshot
        if snapshot is None:
            raise HTTPException(status_code=503, detail="Service Unavailable")

        statuses = engine.get_all_alert_statuses(LOCAL_DEVICE_ID)
        items = [
            AlertItem(
                type=alert_type,
                status="alerting" if status.is_active else "normal",
                since_timestamp=status.since if status.is_active and status.since else 0.0,
                next_sound_timestamp=status.next_notify_at or 0.0,
            )
            for alert_type, status in statuses.items()
        ]

        return StatusResponse(
            timestamp=snapshot.timestamp,
            metrics=StatusMetrics(
                memory=snapshot.memory,
                cpu=snapshot.cpu,
                disk=snapshot.disk,
                network=snapshot.network,
            ),
            alerts=StatusAlerts(active=any(s.is_active for s in statuses.values()), items=items),
        )

    @app.get("/api/v1/series", response_model=SeriesResponse, response_model_by_alias=True)
    def get_series(points: Optional[str] = None):
        """Recent history of each metric, oldest first"""
        series = store.get_series(parse_points(points))
        return SeriesResponse(
            timestamp=time.time(),
            series=SeriesBody(
                memory_used_percent=series.memory_used_percent,
                cpu_usage_percent=series.cpu_usage_percent,
                disk_used_percent=series.disk_used_percent,
                network_status=series.network_status,
            ),
        )

    @app.get("/api/v1/config", response_model=ConfigResponse, response_model_by_alias=True)
    def get_config():
        return ConfigResponse(
            refresh_interval_seconds=settings.refresh_interval_seconds,
            thresholds=ThresholdsBody(
                memory_percent=settings.memory_threshold_percent,
                cpu_percent=settings.cpu_threshold_percent,
                disk_percent=settings.disk_threshold_percent,
            ),
            network_probe_target=settings.network_probe_target,
            port=settings.http_server_port,
        )

    return app
