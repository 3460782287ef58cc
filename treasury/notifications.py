"""Notification sinks for settlement confirmations.

Delivery is out of band and best-effort: the ledger never waits on or rolls
back for a notification.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx

from .exceptions import NotificationError
from .logging import get_logger

logger = get_logger(__name__)


class NotificationSink(Protocol):
    def send(self, citizen_id: str, subject: str, body: str) -> None:
        ...


class LogNotificationSink:
    """Writes notifications to the log instead of delivering them."""

    def send(self, citizen_id: str, subject: str, body: str) -> None:
        logger.info("notification", to=citizen_id, subject=subject, body=body)


@dataclass
class RecordingNotificationSink:
    """Keeps every notification in memory, in send order."""

    sent: list[tuple[str, str, str]] = field(default_factory=list)

    def send(self, citizen_id: str, subject: str, body: str) -> None:
        self.sent.append((citizen_id, subject, body))


class HttpEmailSink:
    """Posts notifications to the backend's email integration endpoint."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.endpoint = endpoint
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, citizen_id: str, subject: str, body: str) -> None:
        try:
            response = self._client.post(
                self.endpoint,
                json={"to": citizen_id, "subject": subject, "body": body},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Email to {citizen_id} not delivered: {e}") from e

    def close(self) -> None:
        self._client.close()
