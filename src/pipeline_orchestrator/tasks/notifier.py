"""Notification delivery for the terminal notify stages."""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path

from pipeline_orchestrator.orchestrator.workflow.invoker import TaskError

logger = logging.getLogger(__name__)

ERROR_NOTIFICATION_FAILED = "notification_failed"


class Notifier(ABC):
    """Abstract message publisher (topic, mailbox, chat channel...)."""

    @abstractmethod
    def publish(self, subject: str, message: str) -> None:
        """Deliver one notification.

        Args:
            subject: Short subject line.
            message: Message body.
        """
        pass


class LogNotifier(Notifier):
    """Publish notifications to the application log."""

    def publish(self, subject: str, message: str) -> None:
        logger.info("Notification published", extra={"subject": subject, "body": message})


class FileNotifier(Notifier):
    """Append notifications to a JSON-lines file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def publish(self, subject: str, message: str) -> None:
        line = json.dumps(
            {
                "published_at": datetime.now(tz=UTC).isoformat(),
                "subject": subject,
                "message": message,
            },
            ensure_ascii=False,
        )
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            raise TaskError(ERROR_NOTIFICATION_FAILED, f"Cannot write {self.path}: {e}") from e
