import asyncio

import pytest

from application.services.notification_dispatcher import NotificationDispatcher
from application.services.session_coordinator import SessionCoordinator
from domain.chat.entity import format_timestamp
from domain.common.exceptions import ChatValidationException


async def _join(coordinator, connection_id, username, room):
    await coordinator.connect(connection_id)
    await coordinator.join_room(connection_id, username, room)


@pytest.mark.asyncio
async def test_two_users_chat_then_one_leaves(coordinator, sender, store):
    await _join(coordinator, "c1", "alice", "lobby")
    assert [f["type"] for f in sender.frames["c1"]] == ["chatHistory", "message", "onlineUsers"]
    assert sender.of_type("c1", "chatHistory")[0]["data"] == []
    assert sender.system("c1") == ["alice has joined the room"]

    await _join(coordinator, "c2", "bob", "lobby")
    assert sender.system("c1")[-1] == "bob has joined the room"
    online = sender.of_type("c1", "onlineUsers")[-1]["data"]
    assert [u["username"] for u in online] == ["alice", "bob"]

    sent = await coordinator.send_message("c1", "alice", "lobby", "hi bob")
    for cid in ("c1", "c2"):
        frame = sender.chat(cid)[-1]
        assert frame["data"] == {
            "username": "alice",
            "message": "hi bob",
            "timestamp": format_timestamp(sent.timestamp),
        }
        assert frame["room"] == "lobby"
    assert store.messages[-1].body == "hi bob"

    sender.reset()
    await coordinator.disconnect("c2")
    assert sender.system("c1") == ["bob has left the room"]
    assert [u["username"] for u in sender.of_type("c1", "onlineUsers")[0]["data"]] == ["alice"]
    assert coordinator.registry.get("c2") is None


@pytest.mark.asyncio
async def test_online_users_grow_with_each_join(coordinator, sender):
    names = ["u0", "u1", "u2", "u3"]
    for i, name in enumerate(names):
        await _join(coordinator, f"c{i}", name, "lobby")
        latest = sender.of_type(f"c{i}", "onlineUsers")[-1]["data"]
        assert [u["username"] for u in latest] == names[: i + 1]
    # earlier members saw every later join
    assert len(sender.of_type("c0", "onlineUsers")) == len(names)


@pytest.mark.asyncio
async def test_history_is_capped_oldest_first_and_room_scoped(coordinator, sender, store):
    for i in range(60):
        store.seed("lobby", "alice", f"m{i}")
    for i in range(5):
        store.seed("games", "bob", f"g{i}")

    await _join(coordinator, "c1", "carol", "lobby")

    history = sender.of_type("c1", "chatHistory")[0]["data"]
    assert len(history) == 50
    assert [h["message"] for h in history] == [f"m{i}" for i in range(10, 60)]
    assert {h["room"] for h in history} == {"lobby"}
    stamps = [h["timestamp"] for h in history]
    assert stamps == sorted(stamps)


@pytest.mark.asyncio
async def test_history_is_only_sent_to_the_joiner(coordinator, sender, store):
    store.seed("lobby", "alice", "old")
    await _join(coordinator, "c1", "alice", "lobby")
    await _join(coordinator, "c2", "bob", "lobby")
    assert len(sender.of_type("c1", "chatHistory")) == 1
    assert len(sender.of_type("c2", "chatHistory")) == 1


@pytest.mark.asyncio
async def test_store_failure_means_no_broadcast(coordinator, sender, store):
    await _join(coordinator, "c1", "alice", "lobby")
    await _join(coordinator, "c2", "bob", "lobby")
    members_before = [m.connection_id for m in coordinator.registry.members_of("lobby")]
    store.fail_append = True

    result = await coordinator.send_message("c1", "alice", "lobby", "lost")

    assert result is None
    assert sender.chat("c1") == []
    assert sender.chat("c2") == []
    assert [m.connection_id for m in coordinator.registry.members_of("lobby")] == members_before


@pytest.mark.asyncio
async def test_history_failure_still_announces_join(coordinator, sender, store):
    store.fail_recent = True
    await _join(coordinator, "c1", "alice", "lobby")

    assert sender.of_type("c1", "chatHistory") == []
    assert sender.system("c1") == ["alice has joined the room"]
    assert sender.of_type("c1", "onlineUsers")


@pytest.mark.asyncio
async def test_disconnect_without_join_broadcasts_nothing(coordinator, sender):
    await _join(coordinator, "c1", "alice", "lobby")
    await coordinator.connect("c2")
    sender.reset()

    await coordinator.disconnect("c2")
    await coordinator.disconnect("never-seen")

    assert not sender.frames
    assert coordinator.registry.get("c2") is None


@pytest.mark.asyncio
async def test_typing_is_not_echoed_to_sender(coordinator, sender):
    await _join(coordinator, "c1", "alice", "lobby")
    await _join(coordinator, "c2", "bob", "lobby")

    await coordinator.typing("c1", "alice", "lobby", True)

    assert sender.of_type("c1", "userTyping") == []
    assert sender.of_type("c2", "userTyping")[0]["data"] == {"username": "alice", "isTyping": True}


@pytest.mark.asyncio
async def test_room_switch_does_not_notify_old_room(coordinator, sender):
    await _join(coordinator, "c1", "alice", "lobby")
    await _join(coordinator, "c2", "bob", "lobby")
    sender.reset()

    await coordinator.join_room("c1", "alice", "games")

    # old room hears nothing about the switch
    assert not sender.frames["c2"]
    assert sender.system("c1") == ["alice has joined the room"]
    online = sender.of_type("c1", "onlineUsers")[0]["data"]
    assert [(u["username"], u["room"]) for u in online] == [("alice", "games")]
    assert [m.username for m in coordinator.registry.members_of("lobby")] == ["bob"]


@pytest.mark.asyncio
async def test_join_requires_username_and_room(coordinator, sender):
    await coordinator.connect("c1")
    with pytest.raises(ChatValidationException):
        await coordinator.join_room("c1", "  ", "lobby")
    with pytest.raises(ChatValidationException):
        await coordinator.join_room("c1", "alice", None)
    assert coordinator.registry.get("c1").room is None
    assert not sender.frames


@pytest.mark.asyncio
async def test_send_to_a_room_not_joined_is_rejected(coordinator, sender, store):
    await _join(coordinator, "c1", "alice", "lobby")
    await _join(coordinator, "c2", "bob", "games")

    ok = await coordinator.handle_event(
        "c2", {"type": "sendMessage", "data": {"username": "bob", "room": "lobby", "message": "sneaky"}}
    )

    assert ok is False
    assert store.messages == []
    assert sender.chat("c1") == []


@pytest.mark.asyncio
async def test_lenient_identity_allows_any_room(registry, broadcaster, store, sender):
    coordinator = SessionCoordinator(
        registry=registry, broadcaster=broadcaster, store=store, strict_identity=False
    )
    await _join(coordinator, "c1", "alice", "lobby")
    await coordinator.connect("c2")

    await coordinator.send_message("c2", "ghost", "lobby", "boo")

    assert sender.chat("c1")[0]["data"]["username"] == "ghost"


@pytest.mark.asyncio
async def test_handle_event_routes_flat_and_nested_payloads(coordinator, sender):
    await coordinator.connect("c1")
    assert await coordinator.handle_event("c1", {"type": "registerPushToken", "pushToken": "ExponentPushToken[x]"})
    assert await coordinator.handle_event("c1", {"type": "joinRoom", "data": {"username": "alice", "room": "lobby"}})
    assert await coordinator.handle_event(
        "c1", {"type": "typing", "username": "alice", "room": "lobby", "isTyping": False}
    )

    session = coordinator.registry.get("c1")
    assert session.push_token == "ExponentPushToken[x]"
    assert session.room == "lobby"


@pytest.mark.asyncio
async def test_handle_event_rejects_bad_frames_without_raising(coordinator, sender):
    await coordinator.connect("c1")
    assert await coordinator.handle_event("c1", {"type": "nope"}) is False
    assert await coordinator.handle_event("c1", {"type": "joinRoom", "data": {"room": "lobby"}}) is False
    assert await coordinator.handle_event("c1", {"type": "registerPushToken", "pushToken": ""}) is False
    assert await coordinator.handle_event(
        "c1", {"type": "sendMessage", "data": {"username": "alice", "room": "lobby", "message": ""}}
    ) is False
    assert coordinator.registry.get("c1").room is None
    assert not sender.frames


@pytest.mark.asyncio
async def test_message_triggers_push_for_other_members(registry, broadcaster, store, push_transport):
    dispatcher = NotificationDispatcher(registry=registry, transport=push_transport)
    coordinator = SessionCoordinator(
        registry=registry, broadcaster=broadcaster, store=store, dispatcher=dispatcher
    )
    await _join(coordinator, "c1", "alice", "lobby")
    await coordinator.register_push_token("c1", "ExponentPushToken[alice]")
    await _join(coordinator, "c2", "bob", "lobby")
    await coordinator.register_push_token("c2", "ExponentPushToken[bob]")

    await coordinator.send_message("c1", "alice", "lobby", "ping")
    await coordinator.aclose()

    assert len(push_transport.batches) == 1
    (msg,) = push_transport.batches[0]
    assert msg.to == "ExponentPushToken[bob]"
    assert msg.title == "alice in lobby"
    assert msg.body == "ping"
    assert msg.data == {"room": "lobby", "username": "alice"}


@pytest.mark.asyncio
async def test_concurrent_membership_changes_leave_no_stale_online_users(coordinator, sender, store, monkeypatch):
    original_recent = store.recent
    delays = iter([0.03, 0.0, 0.02, 0.01, 0.025, 0.005])

    async def slow_recent(room, limit):
        await asyncio.sleep(next(delays, 0.0))
        return await original_recent(room, limit)

    await _join(coordinator, "c0", "alice", "lobby")
    await _join(coordinator, "c9", "zed", "games")
    monkeypatch.setattr(store, "recent", slow_recent)
    for i in range(1, 5):
        await coordinator.connect(f"c{i}")

    await asyncio.gather(
        coordinator.join_room("c1", "u1", "lobby"),
        coordinator.join_room("c2", "u2", "lobby"),
        coordinator.disconnect("c0"),
        coordinator.join_room("c3", "u3", "lobby"),
        coordinator.join_room("c9", "zed", "lobby"),
        coordinator.join_room("c4", "u4", "lobby"),
    )

    members = [m.connection_id for m in coordinator.registry.members_of("lobby")]
    assert sorted(members) == ["c1", "c2", "c3", "c4", "c9"]
    for cid in members:
        latest = sender.of_type(cid, "onlineUsers")[-1]["data"]
        assert [u["connectionId"] for u in latest] == members


@pytest.mark.asyncio
async def test_push_dispatch_does_not_hold_up_the_broadcast(registry, broadcaster, store, sender, make_push_transport):
    started = asyncio.Event()
    release = asyncio.Event()

    class BlockingTransport(make_push_transport):
        async def send_batch(self, batch):
            started.set()
            await release.wait()
            await super().send_batch(batch)

    transport = BlockingTransport()
    dispatcher = NotificationDispatcher(registry=registry, transport=transport)
    coordinator = SessionCoordinator(
        registry=registry, broadcaster=broadcaster, store=store, dispatcher=dispatcher
    )
    await _join(coordinator, "c1", "alice", "lobby")
    await _join(coordinator, "c2", "bob", "lobby")
    await coordinator.register_push_token("c2", "ExponentPushToken[bob]")

    sent = await asyncio.wait_for(coordinator.send_message("c1", "alice", "lobby", "ping"), timeout=1)

    assert sent is not None
    assert sender.chat("c2")[-1]["data"]["message"] == "ping"
    await asyncio.wait_for(started.wait(), timeout=1)
    assert transport.batches == []

    release.set()
    await coordinator.aclose()
    assert len(transport.batches) == 1
