import asyncio
import logging
from dataclasses import dataclass

import uvicorn
from fastapi import FastAPI

from . import metrics
from .alert_history import AlertHistory
from .alert_manager import AlertEngine
from .alert_sender import Notifier, build_notifier
from .api import create_app
from .config import AgentConfig, configure_logging, ensure_app_dir, load_config
from .coordinator import SamplingCoordinator
from .database import create_db_engine, init_db, make_session_factory
from .devices import DeviceRegistry
from .metric_store import MetricStore
from .poller import DeviceDiscovery, RemotePoller
from .samplers import DiskSampler
from .settings import SettingsStore
from .silence import SilenceManager

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: AgentConfig
    settings: SettingsStore
    store: MetricStore
    history: AlertHistory
    silence: SilenceManager
    notifier: Notifier
    engine: AlertEngine
    registry: DeviceRegistry
    coordinator: SamplingCoordinator
    poller: RemotePoller
    discovery: DeviceDiscovery
    app: FastAPI


def build_services(config: AgentConfig) -> Services:
    """Construct and wire every component once"""
    ensure_app_dir(config.database_url)
    db_engine = create_db_engine(config.database_url)
    init_db(db_engine)
    session_factory = make_session_factory(db_engine)

    settings = SettingsStore(session_factory, initial_token=config.initial_token)
    store = MetricStore()
    history = AlertHistory(session_factory)
    silence = SilenceManager(settings, session_factory)
    notifier = build_notifier(config.slack_webhook_url, config.slack_channel)
    engine = AlertEngine(settings, history, silence, notifier)
    registry = DeviceRegistry(session_factory, local_port=settings.http_server_port)

    coordinator = SamplingCoordinator(settings, store, engine, disk_sampler=DiskSampler(config.disk_path))
    poller = RemotePoller(registry, engine, store, settings, interval=config.poll_interval)
    discovery = DeviceDiscovery(
        registry,
        settings,
        hostnames=config.discovery_hostnames,
        interval=config.discovery_interval,
        port=settings.http_server_port,
    )

    app = create_app(settings, store, engine)
    services = Services(
        config=config,
        settings=settings,
        store=store,
        history=history,
        silence=silence,
        notifier=notifier,
        engine=engine,
        registry=registry,
        coordinator=coordinator,
        poller=poller,
        discovery=discovery,
        app=app,
    )

    @app.on_event("startup")
    async def startup_event():
        start_services(services)

    @app.on_event("shutdown")
    async def shutdown_event():
        stop_services(services)

    return services


def start_services(services: Services) -> None:
    """Start every background loop; must run inside the event loop"""
    services.engine.load_state()
    metrics.start_exporter(services.config.prometheus_port)
    services.coordinator.start()
    services.poller.start()
    services.discovery.start()
    logger.info("hostwatch started")


def stop_services(services: Services) -> None:
    """Stop background work and save alert state"""
    services.discovery.stop()
    services.poller.stop()
    services.coordinator.stop()
    services.silence.shutdown()
    services.engine.save_state()
    logger.info("hostwatch stopped")


async def run_headless(services: Services) -> None:
    """Run the sampling loops without the HTTP server"""
    start_services(services)
    try:
        await asyncio.Event().wait()
    finally:
        stop_services(services)


def main() -> None:
    """Command line entry point"""
    config = load_config()
    configure_logging(config)
    services = build_services(config)

    if services.settings.http_server_enabled:
        port = services.settings.http_server_port
        logger.info(f"Starting HTTP server on {config.api_host}:{port}")
        uvicorn.run(services.app, host=config.api_host, port=port, log_level=config.log_level.lower())
    else:
        logger.info("HTTP server disabled, running headless")
        try:
            asyncio.run(run_headless(services))
        except KeyboardInterrupt:
            logger.info("Interrupted")


if __name__ == "__main__":
    main()
