"""Pytest bootstrap configuration.

Environment defaults are set before any application module is imported
so the settings singleton, the engine and the app pick them up.
"""
import os
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PUSH__ENABLED", "false")
os.environ.setdefault("DEBUG", "true")
# No idle pings during TestClient sessions
os.environ.setdefault("REALTIME_WS_IDLE_PING_INTERVAL_S", "0")

from domain.chat.entity import ChatMessage  # noqa: E402
from domain.common.exceptions import (  # noqa: E402
    ConnectionGoneException,
    DeliveryException,
    StoreUnavailableException,
)


class RecordingSender:
    """ConnectionSenderPort that records every frame per connection."""

    def __init__(self):
        self.frames = defaultdict(list)
        self.gone = set()

    async def send(self, connection_id, envelope):
        if connection_id in self.gone:
            raise ConnectionGoneException(connection_id)
        self.frames[connection_id].append(envelope.model_dump(mode="json"))
        return True

    def of_type(self, connection_id, event_type):
        return [f for f in self.frames[connection_id] if f["type"] == event_type]

    def chat(self, connection_id):
        """Non-system message frames."""
        return [f for f in self.of_type(connection_id, "message") if not f["data"].get("isSystem")]

    def system(self, connection_id):
        return [f["data"]["message"] for f in self.of_type(connection_id, "message") if f["data"].get("isSystem")]

    def reset(self):
        self.frames.clear()


class InMemoryMessageStore:
    def __init__(self):
        self.messages = []
        self.fail_append = False
        self.fail_recent = False
        self._base = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def seed(self, room, username, body):
        msg = ChatMessage(
            id=len(self.messages) + 1,
            room=room,
            username=username,
            body=body,
            timestamp=self._base + timedelta(seconds=len(self.messages)),
        )
        self.messages.append(msg)
        return msg

    async def append(self, room, username, body):
        if self.fail_append:
            raise StoreUnavailableException("append", reason="store down")
        return self.seed(room, username, body)

    async def recent(self, room, limit):
        if self.fail_recent:
            raise StoreUnavailableException("recent", reason="store down")
        if limit <= 0:
            return []
        return [m for m in self.messages if m.room == room][-limit:]


class FakePushTransport:
    def __init__(self, max_batch_size=100, fail_batches=()):
        self.max_batch_size = max_batch_size
        self.fail_batches = set(fail_batches)
        self.batches = []
        self.calls = 0

    def is_valid_token(self, token):
        return token.startswith("ExponentPushToken[") and token.endswith("]")

    async def send_batch(self, batch):
        index = self.calls
        self.calls += 1
        if index in self.fail_batches:
            raise DeliveryException("rejected", batch_size=len(batch))
        self.batches.append(list(batch))


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def store():
    return InMemoryMessageStore()


@pytest.fixture
def push_transport():
    return FakePushTransport()


@pytest.fixture
def registry():
    from infrastructure.realtime.registry import ConnectionRegistry
    return ConnectionRegistry()


@pytest.fixture
def broadcaster(registry, sender):
    from infrastructure.realtime.broadcaster import RoomBroadcaster
    return RoomBroadcaster(registry=registry, sender=sender)


@pytest.fixture
def coordinator(registry, broadcaster, store):
    from application.services.session_coordinator import SessionCoordinator
    return SessionCoordinator(registry=registry, broadcaster=broadcaster, store=store)


@pytest.fixture
def make_push_transport():
    return FakePushTransport
