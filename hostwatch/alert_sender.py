import sys
import logging
import threading
from datetime import datetime
from typing import Iterable, Optional

import requests

logger = logging.getLogger(__name__)


class Notifier:
    """Alert notification sink.

    ``play`` must not block the caller for long and must never raise.
    """

    def play(self) -> None:
        """Emit an audible alert"""
        raise NotImplementedError

    def notify(self, alert_type: str, device_name: str, message: str) -> None:
        """Deliver one alert; plain sinks just play a sound"""
        self.play()


class LogNotifier(Notifier):
    """Rings the terminal bell and logs the alert"""

    def __init__(self, bell: bool = True):
        self.bell = bell

    def play(self) -> None:
        if not self.bell:
            return
        try:
            sys.stderr.write("\a")
            sys.stderr.flush()
        except (OSError, ValueError) as e:
            logger.debug(f"Terminal bell unavailable: {e}")

    def notify(self, alert_type: str, device_name: str, message: str) -> None:
        """Ring and log the alert"""
        logger.warning(f"ALERT [{alert_type}] {device_name}: {message}")
        self.play()


class SlackNotifier(Notifier):
    """Posts alerts to a Slack incoming webhook"""

    COLORS = {
        "memory": "#FFA500",
        "cpu": "#FFA500",
        "disk": "#FFA500",
        "network": "#FF0000",
    }

    def __init__(self, webhook_url: str, channel: str = "#monitoring", timeout: float = 5.0):
        self.webhook_url = webhook_url
        self.channel = channel
        self.timeout = timeout

    def play(self) -> None:
        self.notify("alert", "hostwatch", "Resource alert")

    def notify(self, alert_type: str, device_name: str, message: str) -> None:
        """Post to Slack on a background thread"""
        # The webhook call runs off the sampling loop
        thread = threading.Thread(target=self.send, args=(alert_type, device_name, message))
        thread.daemon = True
        thread.start()

    def send(self, alert_type: str, device_name: str, message: str) -> bool:
        """Post one alert to the webhook; returns True on success"""
        if not self.webhook_url:
            logger.error("Slack webhook URL is not configured")
            return False

        payload = {
            "channel": self.channel,
            "attachments": [{
                "color": self.COLORS.get(alert_type, "#FFA500"),
                "title": f"{device_name}: {alert_type} alert",
                "text": f"{message}\n*Time*: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
                "footer": "hostwatch",
                "ts": datetime.now().timestamp(),
            }],
        }

        try:
            response = requests.post(
                self.webhook_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            logger.info(f"Slack alert sent: {device_name} {alert_type}")
            return True
        except requests.RequestException as e:
            logger.error(f"Slack alert failed: {str(e)}")
            return False


class CompositeNotifier(Notifier):
    """Fans out to several notifiers; one failing sink does not stop the rest"""

    def __init__(self, notifiers: Optional[Iterable[Notifier]] = None):
        self.notifiers = list(notifiers or [])

    def play(self) -> None:
        for notifier in self.notifiers:
            try:
                notifier.play()
            except Exception as e:
                logger.error(f"Notifier {type(notifier).__name__} failed: {e}")

    def notify(self, alert_type: str, device_name: str, message: str) -> None:
        """Fan out to every sink, logging individual failures"""
        for notifier in self.notifiers:
            try:
                notifier.notify(alert_type, device_name, message)
            except Exception as e:
                logger.error(f"Notifier {type(notifier).__name__} failed: {e}")


def build_notifier(slack_webhook_url: str = "", slack_channel: str = "#monitoring") -> Notifier:
    """Log notifier, plus Slack when a webhook is configured"""
    notifiers = [LogNotifier()]
    if slack_webhook_url:
        notifiers.append(SlackNotifier(slack_webhook_url, slack_channel))
    return CompositeNotifier(notifiers)
