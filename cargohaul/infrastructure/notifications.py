"""
Fire-and-forget notifications.

Services queue ``Notification`` objects on a per-request ``Outbox``; the
route hands ``Outbox.flush`` to FastAPI background tasks so delivery starts
only after the response (and the DB commit).  Delivery failures are logged
and dropped: they never block or roll back a booking or payment change.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# recipient_id=None addresses the operator (administrator) channel.
OPERATORS = None


@dataclass(frozen=True)
class Notification:
    recipient_id: Optional[int]
    kind: str
    title: str
    message: str
    booking_id: Optional[int] = None


class NotificationDispatcher:
    """Posts notifications to an external webhook; logs them when unset."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient],
        webhook_url: Optional[str],
        timeout: float = 3.0,
    ):
        self.client = client
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def send(self, note: Notification) -> None:
        if not self.webhook_url or self.client is None:
            logger.info(
                "Notification [%s] to %s: %s",
                note.kind, note.recipient_id or "operators", note.title,
            )
            return
        resp = await self.client.post(
            self.webhook_url, json=asdict(note), timeout=self.timeout
        )
        resp.raise_for_status()


class Outbox:
    def __init__(self, dispatcher: Optional[NotificationDispatcher] = None):
        self.dispatcher = dispatcher
        self.messages: list[Notification] = []

    def add(
        self,
        recipient_id: Optional[int],
        kind: str,
        title: str,
        message: str,
        booking_id: Optional[int] = None,
    ) -> None:
        self.messages.append(
            Notification(recipient_id, kind, title, message, booking_id)
        )

    def kinds(self) -> list[str]:
        return [m.kind for m in self.messages]

    async def flush(self) -> None:
        pending, self.messages = self.messages, []
        if self.dispatcher is None:
            return
        for note in pending:
            try:
                await self.dispatcher.send(note)
            except httpx.HTTPError as exc:
                logger.error(
                    "Failed to deliver %s notification for booking %s: %s",
                    note.kind, note.booking_id, exc,
                )
