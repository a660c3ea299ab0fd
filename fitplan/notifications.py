"""Notification collaborator.

The core informs it (fire-and-forget) when something the user should see
happens, like a successful sync. Delivery is someone else's problem.
"""

import logging
from abc import abstractmethod
from typing import List, Protocol, Tuple, runtime_checkable

logger = logging.getLogger(__name__)

LEVELS = ("info", "success", "warning", "error")


@runtime_checkable
class Notifier(Protocol):
    @abstractmethod
    def notify(self, title: str, message: str, level: str = "info") -> None:
        ...


class LoggingNotifier:
    """Writes notifications to the log and remembers the most recent ones."""

    def __init__(self, history_size: int = 50):
        self.history_size = history_size
        self.history: List[Tuple[str, str, str]] = []

    def notify(self, title: str, message: str, level: str = "info") -> None:
        if level not in LEVELS:
            level = "info"
        log_level = logging.WARNING if level in ("warning", "error") else logging.INFO
        logger.log(log_level, f"[{level}] {title}: {message}")
        self.history.append((title, message, level))
        del self.history[: -self.history_size]
