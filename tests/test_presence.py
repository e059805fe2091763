import asyncio

from MessagingApp.presence import ConnectionRouter
from support import drain, new_channel, of_type

CONV = "7b0e7d2e-1a4b-4a59-9a5e-9a7d3f1c0c11"


def test_last_connection_wins():
    router = ConnectionRouter()
    assert router.register("u1", "ch-1") is None
    assert router.register("u1", "ch-2") == "ch-1"

    assert router.channel_for("u1") == "ch-2"
    assert router.user_for("ch-1") is None

    # the superseded socket closing must not take the user offline
    assert router.unregister("u1", "ch-1") is False
    assert router.is_online("u1")

    assert router.unregister("u1", "ch-2") is True
    assert not router.is_online("u1")
    assert router.user_for("ch-2") is None


def test_online_user_ids_and_status():
    router = ConnectionRouter()
    router.register("u1", "ch-1")
    router.register("u2", "ch-2")

    assert router.online_user_ids(["u1", "u3"]) == ["u1"]
    assert sorted(router.online_user_ids()) == ["u1", "u2"]

    router.set_status("u1", "busy")
    router.set_status("u3", "away")
    assert router.status_for("u1") == "busy"
    assert router.status_for("u3") == "offline"


def test_reset_forgets_everything():
    router = ConnectionRouter()
    router.register("u1", "ch-1")
    router.reset()
    assert router.online_user_ids() == []
    assert router.channel_for("u1") is None


async def test_emit_to_conversation_reaches_online_participants():
    router = ConnectionRouter()
    ch1, ch2 = await new_channel(), await new_channel()
    router.register("u1", ch1)
    router.register("u2", ch2)

    reached = await router.emit_to_conversation(CONV, ["u1", "u2", "u3"], "newMessage", {"n": 1}, exclude="u1")

    assert reached == ["u2"]
    assert await drain(ch2) == [("newMessage", {"n": 1})]
    assert await drain(ch1) == []


async def test_emit_to_offline_principal():
    router = ConnectionRouter()
    assert await router.emit_to_principal("nobody", "ready", {}) is False


async def test_broadcast_and_close():
    router = ConnectionRouter()
    ch1, ch2 = await new_channel(), await new_channel()
    router.register("u1", ch1)
    router.register("u2", ch2)

    await router.broadcast("userStatusUpdate", {"userId": "u1"}, exclude="u1")
    assert of_type(await drain(ch2), "userStatusUpdate") == [{"userId": "u1"}]
    assert await drain(ch1) == []

    assert await router.close_principal("u2") is True
    assert await drain(ch2) == [("session.logout", None)]


async def test_typing_start_then_stop_sends_one_false():
    router = ConnectionRouter()
    watcher = await new_channel()
    router.register("u2", watcher)

    await router.typing_start(CONV, "u1", ["u1", "u2"])
    assert router.typing_users(CONV) == ["u1"]
    assert await router.typing_stop(CONV, "u1") is True
    assert await router.typing_stop(CONV, "u1") is False

    typing = of_type(await drain(watcher, wait=0.4), "userTyping")
    assert [t["isTyping"] for t in typing] == [True, False]
    assert router.typing_users(CONV) == []


async def test_typing_expires_on_its_own():
    router = ConnectionRouter()
    watcher = await new_channel()
    router.register("u2", watcher)

    await router.typing_start(CONV, "u1", ["u1", "u2"])
    await asyncio.sleep(0.35)

    typing = of_type(await drain(watcher), "userTyping")
    assert typing == [
        {"userId": "u1", "conversationId": CONV, "isTyping": True},
        {"userId": "u1", "conversationId": CONV, "isTyping": False},
    ]
    assert router.typing_users(CONV) == []


async def test_restarting_typing_resets_the_timer():
    router = ConnectionRouter()
    watcher = await new_channel()
    router.register("u2", watcher)

    await router.typing_start(CONV, "u1", ["u1", "u2"])
    await asyncio.sleep(0.12)
    await router.typing_start(CONV, "u1", ["u1", "u2"])
    await asyncio.sleep(0.12)
    assert router.typing_users(CONV) == ["u1"]

    await asyncio.sleep(0.2)
    typing = of_type(await drain(watcher), "userTyping")
    assert [t["isTyping"] for t in typing] == [True, True, False]


async def test_clear_user_stops_typing_everywhere():
    router = ConnectionRouter()
    watcher = await new_channel()
    router.register("u2", watcher)
    other = "0c6b1c9a-1111-4c1e-8a51-3f1ea9b0d0a2"

    await router.typing_start(CONV, "u1", ["u1", "u2"])
    await router.typing_start(other, "u1", ["u1", "u2"])
    await router.clear_user("u1")

    typing = of_type(await drain(watcher), "userTyping")
    assert sorted((t["conversationId"], t["isTyping"]) for t in typing) == sorted(
        [(CONV, True), (other, True), (CONV, False), (other, False)]
    )
    assert router.typing_users(CONV) == [] and router.typing_users(other) == []
