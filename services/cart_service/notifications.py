"""Notification sinks for short-lived user messages ("item added", "cart cleared").

The cart core never depends on the result of a notification.
"""

import logging
from typing import Dict, List

logger = logging.getLogger(__name__)

LEVELS = ("success", "info", "warning", "error")


class LogNotifier:
    """Writes notifications to the service log."""

    def notify(self, level: str, message: str) -> None:
        log_level = logging.WARNING if level in ("warning", "error") else logging.INFO
        logger.log(log_level, f"[{level}] {message}")


class CollectingNotifier:
    """Keeps notifications so an HTTP response can hand them to the storefront."""

    def __init__(self):
        self.messages: List[Dict[str, str]] = []

    def notify(self, level: str, message: str) -> None:
        if level not in LEVELS:
            level = "info"
        self.messages.append({"level": level, "message": message})
        logger.debug(f"[{level}] {message}")
