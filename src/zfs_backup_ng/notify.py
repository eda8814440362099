"""Push notifications through a Gotify server.

Every message is logged locally; delivery depends on the configured mode
and never affects the outcome of a run.
"""

import logging
from dataclasses import dataclass

import requests

from .config.schema import NotificationConfig, NotificationMode

logger = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"
INFO = "info"

PRIORITIES = {SUCCESS: 1, INFO: 5, ERROR: 8}


@dataclass
class DeliveryResult:
    """Outcome of one notification attempt."""

    delivered: bool
    reason: str = ""


class Notifier:
    """Log a message and forward it to Gotify according to the mode."""

    def __init__(self, config: NotificationConfig, title: str, session=None) -> None:
        self.config = config
        self.title = title
        self.session = session or requests.Session()

    def should_send(self, level: str) -> bool:
        mode = self.config.mode
        if mode == NotificationMode.NONE:
            return False
        if mode == NotificationMode.ERROR:
            return level == ERROR
        return True

    def send(self, message: str, level: str = INFO) -> DeliveryResult:
        if level == ERROR:
            logger.error(message)
        else:
            logger.info(message)

        if not self.should_send(level):
            return DeliveryResult(False, f"suppressed by mode '{self.config.mode.value}'")

        if not (self.config.gotify_url and self.config.gotify_token):
            logger.info("Gotify not configured - skipping notification")
            return DeliveryResult(False, "not configured")

        payload = {
            "title": self.title,
            "message": message,
            "priority": PRIORITIES.get(level, PRIORITIES[INFO]),
        }
        try:
            response = self.session.post(
                f"{self.config.gotify_url}/message",
                json=payload,
                headers={"X-Gotify-Key": self.config.gotify_token},
                timeout=self.config.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Gotify notification failed: %s", e)
            return DeliveryResult(False, str(e))

        logger.debug("Gotify notification delivered: %s", self.title)
        return DeliveryResult(True)

    def success(self, message: str) -> DeliveryResult:
        return self.send(message, SUCCESS)

    def error(self, message: str) -> DeliveryResult:
        return self.send(message, ERROR)

    def info(self, message: str) -> DeliveryResult:
        return self.send(message, INFO)
