"""Outbox delivery: webhook posting and failure isolation."""

from __future__ import annotations

import json
import logging

import httpx
import pytest

from cargohaul.infrastructure.notifications import (
    OPERATORS,
    NotificationDispatcher,
    Outbox,
)

WEBHOOK = "https://hooks.example.test/notify"


def recording(status_code: int = 200):
    """Handler that answers with *status_code* and keeps every request body."""
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(status_code)

    return handler, seen


def queued(dispatcher) -> Outbox:
    outbox = Outbox(dispatcher)
    outbox.add(7, "booking_confirmed", "Booking Confirmed", "On its way", 41)
    outbox.add(OPERATORS, "escrow_awaiting_release", "Escrow Awaiting Release", "Held", 41)
    return outbox


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_posts_each_notification(self):
        handler, seen = recording()
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        outbox = queued(NotificationDispatcher(client, WEBHOOK))

        await outbox.flush()
        assert outbox.messages == []
        assert seen == [
            {
                "recipient_id": 7,
                "kind": "booking_confirmed",
                "title": "Booking Confirmed",
                "message": "On its way",
                "booking_id": 41,
            },
            {
                "recipient_id": None,
                "kind": "escrow_awaiting_release",
                "title": "Escrow Awaiting Release",
                "message": "Held",
                "booking_id": 41,
            },
        ]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_without_webhook_nothing_is_posted(self):
        handler, seen = recording()
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        outbox = queued(NotificationDispatcher(client, None))

        await outbox.flush()
        assert outbox.messages == []
        assert seen == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_without_dispatcher_queue_is_drained(self):
        outbox = queued(None)
        await outbox.flush()
        assert outbox.messages == []


class TestDeliveryFailures:
    @pytest.mark.asyncio
    async def test_unreachable_webhook_is_logged_not_raised(self, caplog):
        attempts: list[str] = []

        def down(request: httpx.Request) -> httpx.Response:
            attempts.append(json.loads(request.content)["kind"])
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(down))
        outbox = queued(NotificationDispatcher(client, WEBHOOK))

        with caplog.at_level(logging.ERROR):
            await outbox.flush()

        assert outbox.messages == []
        assert attempts == ["booking_confirmed", "escrow_awaiting_release"]
        assert "Failed to deliver booking_confirmed" in caplog.text
        await client.aclose()

    @pytest.mark.asyncio
    async def test_server_error_does_not_stop_the_queue(self):
        handler, seen = recording(status_code=500)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        outbox = queued(NotificationDispatcher(client, WEBHOOK))

        await outbox.flush()
        assert outbox.messages == []
        assert [body["kind"] for body in seen] == [
            "booking_confirmed", "escrow_awaiting_release",
        ]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_send_raises_on_server_error(self):
        handler, _ = recording(status_code=500)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        dispatcher = NotificationDispatcher(client, WEBHOOK)
        outbox = queued(dispatcher)

        with pytest.raises(httpx.HTTPStatusError):
            await dispatcher.send(outbox.messages[0])
        await client.aclose()
