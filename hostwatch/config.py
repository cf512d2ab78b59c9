import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

APP_DIR = Path.home() / ".hostwatch"

DEFAULT_PORT = 17890
DEFAULT_DISCOVERY_HOSTNAMES = [
    "server", "homelab", "nas",
    "workstation", "desktop", "laptop",
    "raspberrypi",
]


@dataclass
class AgentConfig:
    """Process-level configuration read from the environment"""
    database_url: str = f"sqlite:///{APP_DIR / 'hostwatch.db'}"
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    api_host: str = "0.0.0.0"
    prometheus_port: int = 0
    disk_path: str = "/"
    initial_token: str = ""
    poll_interval: int = 5
    discovery_interval: int = 15
    discovery_hostnames: List[str] = field(default_factory=lambda: list(DEFAULT_DISCOVERY_HOSTNAMES))
    slack_webhook_url: str = ""
    slack_channel: str = "#monitoring"


def _split_hostnames(value: str) -> List[str]:
    return [name.strip() for name in value.split(",") if name.strip()]


def load_config() -> AgentConfig:
    """Load configuration from .env and the process environment"""
    load_dotenv()

    defaults = AgentConfig()
    hostnames = os.getenv("DISCOVERY_HOSTNAMES")

    return AgentConfig(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        log_format=os.getenv("LOG_FORMAT", defaults.log_format),
        api_host=os.getenv("API_HOST", defaults.api_host),
        prometheus_port=int(os.getenv("PROMETHEUS_PORT", defaults.prometheus_port)),
        disk_path=os.getenv("DISK_PATH", defaults.disk_path),
        initial_token=os.getenv("HOSTWATCH_TOKEN", defaults.initial_token),
        poll_interval=int(os.getenv("POLL_INTERVAL", defaults.poll_interval)),
        discovery_interval=int(os.getenv("DISCOVERY_INTERVAL", defaults.discovery_interval)),
        discovery_hostnames=_split_hostnames(hostnames) if hostnames is not None else defaults.discovery_hostnames,
        slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL", defaults.slack_webhook_url),
        slack_channel=os.getenv("SLACK_CHANNEL", defaults.slack_channel),
    )


def configure_logging(config: AgentConfig) -> None:
    """Configure root logging from the agent config"""
    logging.basicConfig(level=config.log_level, format=config.log_format)


def ensure_app_dir(database_url: str) -> None:
    """Create the default data directory when the database lives there"""
    if database_url.startswith("sqlite:///") and str(APP_DIR) in database_url:
        APP_DIR.mkdir(parents=True, exist_ok=True)
