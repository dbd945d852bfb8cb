from __future__ import annotations

import asyncio
from functools import lru_cache
import logging
from typing import Any

import httpx

from bandi.core.config import get_settings

logger = logging.getLogger(__name__)


class Notifier:
    """Fire-and-forget delivery of lifecycle events to an optional webhook."""

    def __init__(
        self,
        webhook_url: str | None,
        timeout_seconds: float = 5.0,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self.client = client
        self._pending: set[asyncio.Task[None]] = set()

    def notify(self, event: str, payload: dict[str, Any]) -> asyncio.Task[None] | None:
        if not self.webhook_url:
            logger.info("notification event=%s payload=%s", event, payload)
            return None

        task = asyncio.get_running_loop().create_task(self._deliver(event, payload))
        # The loop only keeps weak references to tasks.
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _deliver(self, event: str, payload: dict[str, Any]) -> None:
        body = {"event": event, "payload": payload}
        try:
            if self.client is not None:
                response = await self.client.post(self.webhook_url, json=body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(self.webhook_url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("notification delivery failed event=%s error=%s", event, exc)
            return
        logger.info("notification delivered event=%s status=%s", event, response.status_code)


@lru_cache
def get_notifier() -> Notifier:
    settings = get_settings()
    return Notifier(webhook_url=settings.notify_webhook_url, timeout_seconds=settings.notify_timeout_seconds)
