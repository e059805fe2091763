import asyncio
from unittest import mock

import pytest
from channels.db import database_sync_to_async
from django.db import DatabaseError

from accounts.models import User
from MessagingApp.engine import MessagingEngine
from MessagingApp.errors import Forbidden, Internal, InvalidArgument, NotFound
from MessagingApp.models import Conversation, DeliveryStatus, Message, Participant
from support import drain, new_channel, of_type

pytestmark = pytest.mark.django_db(transaction=True)

FILE_ATTACHMENT = {
    "type": "file",
    "file_name": "deck.pdf",
    "storage_uri": "/media/attachments/deck.pdf",
    "byte_size": 1024,
    "mime_type": "application/pdf",
}


@pytest.fixture
def engine(router):
    return MessagingEngine(router=router)


@pytest.fixture
def slow_typing(settings):
    settings.MESSAGING = {**settings.MESSAGING, "TYPING_TIMEOUT_SECONDS": 5}


async def connected(engine, user):
    channel = await new_channel()
    await engine.connect(user, channel)
    return channel


@database_sync_to_async
def status_of(message_id):
    return Message.objects.get(id=message_id).delivery_status


@database_sync_to_async
def unread_of(conversation, user):
    return Participant.objects.get(conversation=conversation, user=user).unread_count


# ── Presence ──────────────────────────────────────────────────
async def test_connect_announces_to_others_only(engine, alice, bob):
    b = await connected(engine, bob)
    a = await connected(engine, alice)

    updates = of_type(await drain(b), "userStatusUpdate")
    assert [(u["userId"], u["status"]) for u in updates] == [(str(alice.id), "online")]
    assert of_type(await drain(a), "userStatusUpdate") == []


async def test_update_status(engine, alice, bob):
    a = await connected(engine, alice)
    b = await connected(engine, bob)
    await drain(a)

    payload = await engine.update_status(alice, "Away")

    assert payload["status"] == "away"
    assert engine.router.status_for(alice.id) == "away"
    assert of_type(await drain(a), "userStatusUpdate")[0]["status"] == "away"
    assert of_type(await drain(b), "userStatusUpdate")[-1]["status"] == "away"
    with pytest.raises(InvalidArgument):
        await engine.update_status(alice, "sleeping")


async def test_disconnect_goes_offline_and_stamps_last_seen(engine, alice, bob):
    a = await connected(engine, alice)
    b = await connected(engine, bob)
    await drain(b)

    await engine.disconnect(alice, a)

    assert not engine.router.is_online(alice.id)
    offline = of_type(await drain(b), "userStatusUpdate")
    assert [(u["userId"], u["status"]) for u in offline] == [(str(alice.id), "offline")]
    last_seen = await database_sync_to_async(lambda: User.objects.get(id=alice.id).last_seen)()
    assert last_seen is not None


async def test_stale_disconnect_is_ignored(engine, alice, bob):
    old = await connected(engine, alice)
    await connected(engine, alice)
    b = await connected(engine, bob)
    await drain(b)

    await engine.disconnect(alice, old)

    assert engine.router.is_online(alice.id)
    assert of_type(await drain(b), "userStatusUpdate") == []
    last_seen = await database_sync_to_async(lambda: User.objects.get(id=alice.id).last_seen)()
    assert last_seen is None


async def test_logout_closes_live_session(engine, alice):
    a = await connected(engine, alice)
    await drain(a)

    assert await engine.logout(alice) is True
    assert await drain(a) == [("session.logout", None)]


# ── Sending ───────────────────────────────────────────────────
async def test_send_reaches_everyone_and_is_delivered(engine, direct, alice, bob):
    a = await connected(engine, alice)
    b = await connected(engine, bob)
    await drain(a)
    await drain(b)

    data, created = await engine.send_message(direct.id, alice, {"content": "hi bob", "client_id": "c-1"})

    assert created is True
    assert data["content"] == "hi bob"
    b_events = await drain(b)
    a_events = await drain(a)
    assert [p["message"]["id"] for p in of_type(b_events, "newMessage")] == [data["id"]]
    assert [p["message"]["id"] for p in of_type(a_events, "newMessage")] == [data["id"]]

    (delivered,) = of_type(a_events, "messageDelivered")
    assert delivered["messageId"] == data["id"]
    assert delivered["userId"] == str(bob.id)
    assert delivered["deliveredAt"]
    assert await status_of(data["id"]) == DeliveryStatus.DELIVERED
    assert await unread_of(direct, bob) == 1
    assert await unread_of(direct, alice) == 0


async def test_offline_recipient_leaves_message_sent(engine, direct, alice):
    a = await connected(engine, alice)
    await drain(a)

    data, _ = await engine.send_message(direct.id, alice, {"content": "anyone?"})

    assert of_type(await drain(a), "messageDelivered") == []
    assert await status_of(data["id"]) == DeliveryStatus.SENT


async def test_replayed_client_id_is_not_fanned_out_twice(engine, direct, alice, bob):
    b = await connected(engine, bob)

    first, created = await engine.send_message(direct.id, alice, {"content": "once", "client_id": "dup"})
    second, created_again = await engine.send_message(direct.id, alice, {"content": "once", "client_id": "dup"})

    assert created is True and created_again is False
    assert first["id"] == second["id"]
    assert len(of_type(await drain(b), "newMessage")) == 1
    assert await unread_of(direct, bob) == 1


async def test_outsider_is_refused_before_payload_checks(engine, direct, carol):
    with pytest.raises(Forbidden):
        await engine.send_message(direct.id, carol, {"content": ""})
    with pytest.raises(NotFound):
        await engine.send_message("not-a-uuid", carol, {"content": "hi"})


async def test_invalid_payload(engine, direct, alice):
    with pytest.raises(InvalidArgument):
        await engine.send_message(direct.id, alice, {"type": "text", "content": "   "})
    with pytest.raises(InvalidArgument):
        await engine.send_message(direct.id, alice, {"type": "system", "content": "I am the server"})


async def test_storage_failure_becomes_internal(engine, direct, alice):
    with mock.patch.object(engine.messages, "create", side_effect=DatabaseError("disk full")):
        with pytest.raises(Internal):
            await engine.send_message(direct.id, alice, {"content": "lost"})


async def test_send_clears_typing(slow_typing, engine, direct, alice, bob):
    b = await connected(engine, bob)
    await engine.typing_start(direct.id, alice)

    await engine.send_message(direct.id, alice, {"content": "done typing"})

    events = await drain(b)
    names = [name for name, _ in events if name in ("userTyping", "newMessage")]
    assert names == ["userTyping", "newMessage", "userTyping"]
    assert [p["isTyping"] for p in of_type(events, "userTyping")] == [True, False]
    assert engine.router.typing_users(direct.id) == []


# ── Reading, editing, deleting, reacting ──────────────────────
async def test_mark_read(engine, direct, alice, bob):
    a = await connected(engine, alice)
    first, _ = await engine.send_message(direct.id, alice, {"content": "one"})
    second, _ = await engine.send_message(direct.id, alice, {"content": "two"})
    await drain(a)

    payload = await engine.mark_read(direct.id, bob)

    assert payload["messageIds"] == [first["id"], second["id"]]
    assert payload["userId"] == str(bob.id)
    (seen,) = of_type(await drain(a), "messagesRead")
    assert seen["messageIds"] == payload["messageIds"]
    assert await status_of(first["id"]) == DeliveryStatus.READ
    assert await unread_of(direct, bob) == 0

    again = await engine.mark_read(direct.id, bob)
    assert again["messageIds"] == []
    assert of_type(await drain(a), "messagesRead") == []


async def test_edit_message(engine, direct, alice, bob):
    sent, _ = await engine.send_message(direct.id, alice, {"content": "helo"})
    b = await connected(engine, bob)

    data = await engine.edit_message(sent["id"], alice, "hello")

    assert data["content"] == "hello"
    assert data["is_edited"] is True
    (update,) = of_type(await drain(b), "messageUpdated")
    assert update["message"]["content"] == "hello"
    with pytest.raises(Forbidden):
        await engine.edit_message(sent["id"], bob, "hijack")


async def test_attachment_messages_cannot_be_edited(engine, direct, alice):
    sent, _ = await engine.send_message(
        direct.id, alice, {"type": "file", "content": "deck", "attachments": [FILE_ATTACHMENT]}
    )
    assert sent["content"]["caption"] == "deck"
    with pytest.raises(InvalidArgument):
        await engine.edit_message(sent["id"], alice, "new caption")


async def test_delete_message_announces_once(engine, direct, alice, bob):
    sent, _ = await engine.send_message(direct.id, alice, {"content": "oops"})
    b = await connected(engine, bob)

    payload = await engine.delete_message(sent["id"], alice)
    again = await engine.delete_message(sent["id"], alice)

    assert payload["messageId"] == sent["id"]
    assert payload["deletedAt"] == again["deletedAt"]
    assert len(of_type(await drain(b), "messageDeleted")) == 1


async def test_reactions_reach_everyone(engine, direct, alice, bob):
    sent, _ = await engine.send_message(direct.id, alice, {"content": "ship it"})
    a = await connected(engine, alice)
    b = await connected(engine, bob)
    await drain(a)

    payload = await engine.react_to_message(sent["id"], bob, "🚀")

    assert [(r["emoji"], r["user_id"]) for r in payload["reactions"]] == [("🚀", str(bob.id))]
    assert len(of_type(await drain(a), "reactionUpdated")) == 1
    assert len(of_type(await drain(b), "reactionUpdated")) == 1

    cleared = await engine.react_to_message(sent["id"], bob, "🚀")
    assert cleared["reactions"] == []


# ── Conversations ─────────────────────────────────────────────
async def test_join_snapshot(slow_typing, engine, direct, alice, bob, carol):
    await connected(engine, alice)
    await connected(engine, bob)
    await engine.typing_start(direct.id, alice)

    snapshot = await engine.join_conversation(direct.id, bob)

    assert snapshot["conversationId"] == str(direct.id)
    assert sorted(snapshot["onlineUserIds"]) == sorted([str(alice.id), str(bob.id)])
    assert snapshot["typingUserIds"] == [str(alice.id)]
    with pytest.raises(Forbidden):
        await engine.join_conversation(direct.id, carol)


async def test_new_direct_is_announced_to_the_other_side(engine, alice, carol):
    c = await connected(engine, carol)
    await drain(c)

    data, created = await engine.get_or_create_direct(alice, carol.id)
    again, created_again = await engine.get_or_create_direct(carol, alice.id)

    assert created is True and created_again is False
    assert data["id"] == again["id"]
    (update,) = of_type(await drain(c), "conversationUpdated")
    assert update["conversation"]["peer"]["id"] == str(alice.id)


async def test_concurrent_direct_requests_share_one_conversation(engine, alice, carol):
    (first, _), (second, _) = await asyncio.gather(
        engine.get_or_create_direct(alice, carol.id),
        engine.get_or_create_direct(carol, alice.id),
    )
    assert first["id"] == second["id"]
    assert await database_sync_to_async(Conversation.objects.count)() == 1


async def test_group_lifecycle_posts_system_messages(engine, alice, bob, carol):
    b = await connected(engine, bob)
    await drain(b)

    group = await engine.create_group(alice, "Founders", [bob.id])

    events = await drain(b)
    (created,) = of_type(events, "newMessage")
    assert created["message"]["type"] == "system"
    assert created["message"]["content"] == "Alice created the group"
    assert of_type(events, "conversationUpdated")[0]["conversation"]["id"] == group["id"]

    await engine.add_participant(group["id"], alice, carol.id)
    joined = of_type(await drain(b), "newMessage")
    assert [m["message"]["content"] for m in joined] == ["Carol joined the conversation"]

    result = await engine.remove_participant(group["id"], bob, bob.id)
    assert result == {"conversation_id": group["id"], "user_id": str(bob.id)}
    events = await drain(b)
    # bob is no longer a participant, so only the membership update reaches him
    assert of_type(events, "newMessage") == []
    assert len(of_type(events, "conversationUpdated")) == 1

    with pytest.raises(Forbidden):
        await engine.send_message(group["id"], bob, {"content": "still here?"})


async def test_update_settings_reaches_participants(engine, alice, bob):
    b = await connected(engine, bob)
    group = await engine.create_group(alice, "Team", [bob.id])
    await drain(b)

    data = await engine.update_settings(group["id"], alice, {"allow_file_sharing": False})

    assert data["settings"]["allow_file_sharing"] is False
    (update,) = of_type(await drain(b), "conversationUpdated")
    assert update["conversation"]["settings"]["allow_file_sharing"] is False
    with pytest.raises(Forbidden):
        await engine.send_message(group["id"], bob, {"type": "file", "attachments": [FILE_ATTACHMENT]})


async def test_typing_requires_membership(engine, direct, carol):
    with pytest.raises(Forbidden):
        await engine.typing_start(direct.id, carol)
    with pytest.raises(Forbidden):
        await engine.typing_users(direct.id, carol)
