import json
import logging

from ooh_billing.notifications import LoggingNotifier, RedisNotifier, build_notifier


class FakeRedis:
    def __init__(self, fail=False):
        self.published = []
        self.closed = False
        self.fail = fail

    async def publish(self, channel, message):
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((channel, message))

    async def aclose(self):
        self.closed = True


async def test_redis_notifier_publishes_json():
    redis = FakeRedis()
    notifier = RedisNotifier(redis, "billing.events")

    notifier.notify("invoice.generated", {"invoice_id": "INV/2023-24/0001", "total": "20060.00"})
    await notifier.aclose()

    assert redis.closed
    [(channel, message)] = redis.published
    assert channel == "billing.events"
    body = json.loads(message)
    assert body["event"] == "invoice.generated"
    assert body["payload"]["invoice_id"] == "INV/2023-24/0001"
    assert "timestamp" in body


async def test_publish_failure_is_logged_not_raised(caplog):
    notifier = RedisNotifier(FakeRedis(fail=True), "billing.events")

    with caplog.at_level(logging.ERROR, logger="ooh.billing.notify"):
        notifier.notify("invoice.generated", {"invoice_id": "x"})
        await notifier.drain()

    assert "Failed to publish billing notification" in caplog.text


def test_build_notifier_without_redis_logs():
    assert isinstance(build_notifier(None, "billing.events"), LoggingNotifier)
