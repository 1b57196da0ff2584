"""
OOH Billing — Notification sink

Fire-and-forget events emitted after an invoice is generated. A failed
notification is logged and never affects the invoice.

Events:
  invoice.generated        {"invoice_id", "campaign_id", "month", "total"}
  invoice.needs_review     same payload, emitted for override-generated invoices
  ledger.partial_failure   {"invoice_id", "failures"}
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger("ooh.billing.notify")


class Notifier(Protocol):
    def notify(self, event: str, payload: dict) -> None: ...


class LoggingNotifier:
    """Default sink: writes events to the log."""

    def notify(self, event: str, payload: dict) -> None:
        logger.info("Notification %s: %s", event, payload)


class RedisNotifier:
    """Publishes JSON events on a Redis pub/sub channel without awaiting delivery."""

    def __init__(self, redis: aioredis.Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_url(cls, url: str, channel: str) -> "RedisNotifier":
        return cls(aioredis.from_url(url, decode_responses=True), channel)

    def notify(self, event: str, payload: dict) -> None:
        msg = json.dumps({
            "event": event,
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }, default=str)
        task = asyncio.get_running_loop().create_task(self._publish(msg))
        # Hold a reference until done so the task is not garbage collected
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, msg: str) -> None:
        try:
            await self._redis.publish(self._channel, msg)
        except Exception:
            logger.exception("Failed to publish billing notification")

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._redis.aclose()


def build_notifier(redis_url: Optional[str], channel: str) -> Notifier:
    if redis_url:
        return RedisNotifier.from_url(redis_url, channel)
    return LoggingNotifier()
