"""Shared fixtures: an in-memory broker and payload builders."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from zapdesk.errors import PublishError
from zapdesk.models.envelope import PublishAck
from zapdesk.transport.envelope import decode

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeBroker:
    """Records publishes and consumers; can be told to fail the next N publishes."""

    def __init__(self):
        self.connected = False
        self.published: list[tuple[str, bytes, str]] = []
        self.consumers: dict[str, object] = {}
        self.fail_next = 0
        self.publish_calls = 0

    async def connect(self):
        self.connected = True

    async def close(self):
        self.connected = False

    async def publish(self, queue, body, message_id=None):
        self.publish_calls += 1
        if self.fail_next:
            self.fail_next -= 1
            raise PublishError("broker down", queue=queue, message_id=message_id)
        self.published.append((queue, body, message_id))
        return PublishAck(queue=queue, message_id=message_id or "", published_at=datetime.now(timezone.utc))

    async def consume(self, queue, handler):
        self.consumers[queue] = handler

    async def deliver(self, queue, payload):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        await self.consumers[queue](body)

    def sent(self):
        return [decode(body) for _, body, _ in self.published]


class Clock:
    """Settable clock for routers and state machines."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


def inbound(message_id="m1", phone="5511999999999", body="Olá", type="text", ts=T0, **extra):
    payload = {
        "externalMessageId": message_id,
        "from": f"{phone}@c.us",
        "type": type,
        "body": body,
        "timestamp": ts.isoformat(),
    }
    payload.update(extra)
    return payload


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def clock():
    return Clock()
