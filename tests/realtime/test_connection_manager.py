import asyncio

import pytest

from application.ports.realtime import Envelope
from domain.common.exceptions import ConnectionGoneException
from infrastructure.realtime.connection_manager import ConnectionManager


class FakeWebSocket:
    def __init__(self, *, block: asyncio.Event | None = None):
        self.sent = []
        self.closed_with = None
        self._block = block

    async def send_json(self, payload):
        if self._block is not None:
            await self._block.wait()
        self.sent.append(payload)

    async def close(self, code=1000):
        self.closed_with = code


@pytest.mark.asyncio
async def test_send_delivers_envelope_in_order():
    mgr = ConnectionManager(queue_max=10, overflow_policy="drop_oldest")
    ws = FakeWebSocket()
    await mgr.add("c1", ws)

    assert await mgr.send("c1", Envelope(type="message", room="lobby", data={"n": 1}))
    assert await mgr.send("c1", Envelope(type="message", room="lobby", data={"n": 2}))
    await mgr.flush()

    assert [p["data"]["n"] for p in ws.sent] == [1, 2]
    assert ws.sent[0]["room"] == "lobby"
    assert ws.sent[0]["ts"].endswith("Z")
    await mgr.close_all()


@pytest.mark.asyncio
async def test_send_to_unknown_connection_raises_gone():
    mgr = ConnectionManager(queue_max=10)
    with pytest.raises(ConnectionGoneException):
        await mgr.send("missing", Envelope(type="ping"))


@pytest.mark.asyncio
async def test_remove_discards_pending_frames():
    gate = asyncio.Event()
    mgr = ConnectionManager(queue_max=10)
    await mgr.add("c1", FakeWebSocket(block=gate))
    await mgr.send("c1", Envelope(type="a"))
    await mgr.send("c1", Envelope(type="b"))

    await mgr.remove("c1")
    assert len(mgr) == 0
    # nothing left to wait for
    await asyncio.wait_for(mgr.flush(), timeout=1)
    with pytest.raises(ConnectionGoneException):
        await mgr.send("c1", Envelope(type="c"))


@pytest.mark.asyncio
async def test_drop_new_policy_rejects_when_full():
    gate = asyncio.Event()
    mgr = ConnectionManager(queue_max=1, overflow_policy="drop_new")
    ws = FakeWebSocket(block=gate)
    await mgr.add("c1", ws)
    await mgr.send("c1", Envelope(type="first"))
    await asyncio.sleep(0)  # sender task takes "first" and blocks on the socket
    assert await mgr.send("c1", Envelope(type="second"))
    assert not await mgr.send("c1", Envelope(type="third"))

    gate.set()
    await mgr.flush()
    assert [p["type"] for p in ws.sent] == ["first", "second"]
    await mgr.close_all()


@pytest.mark.asyncio
async def test_disconnect_policy_closes_socket():
    gate = asyncio.Event()
    mgr = ConnectionManager(queue_max=1, overflow_policy="disconnect")
    ws = FakeWebSocket(block=gate)
    await mgr.add("c1", ws)
    await mgr.send("c1", Envelope(type="first"))
    await asyncio.sleep(0)
    await mgr.send("c1", Envelope(type="second"))
    assert not await mgr.send("c1", Envelope(type="third"))
    assert ws.closed_with == 1013
    await mgr.close_all()


def test_invalid_policy_falls_back_to_drop_oldest():
    mgr = ConnectionManager(queue_max=1, overflow_policy="bogus")
    assert mgr._overflow_policy == "drop_oldest"
