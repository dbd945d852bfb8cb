from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest

from bandi.services.notifier import Notifier


def test_notify_without_webhook_only_logs(caplog: pytest.LogCaptureFixture) -> None:
    notifier = Notifier(webhook_url=None)

    with caplog.at_level(logging.INFO, logger="bandi.services.notifier"):
        task = notifier.notify("assignment.book", {"id": 1})

    assert task is None
    assert "assignment.book" in caplog.text


def test_notify_posts_event_to_webhook() -> None:
    received: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(204)

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = Notifier(webhook_url="https://hooks.example.test/bandi", client=client)
            notifier.notify("assignment.assign", {"id": 3, "state": "Assigned"})
            await notifier.drain()

    asyncio.run(run())

    assert received == [{"event": "assignment.assign", "payload": {"id": 3, "state": "Assigned"}}]


def test_delivery_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = Notifier(webhook_url="https://hooks.example.test/bandi", client=client)
            task = notifier.notify("assignment.close", {"id": 3})
            await notifier.drain()
            assert task is not None
            assert task.exception() is None

    with caplog.at_level(logging.WARNING, logger="bandi.services.notifier"):
        asyncio.run(run())

    assert "notification delivery failed event=assignment.close" in caplog.text
