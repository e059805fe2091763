from datetime import timedelta

import pytest
from django.utils import timezone

from MessagingApp.drafts import AttachmentSpec, FileContent, MessageDraft, TextContent, VoiceContent
from MessagingApp.errors import Forbidden, InvalidArgument, NotFound
from MessagingApp.models import (
    Attachment,
    AttachmentKind,
    AuditEvent,
    DeliveryStatus,
    Message,
    MessageAudit,
    Participant,
    Receipt,
)
from MessagingApp.serializers import MessageSerializer

pytestmark = pytest.mark.django_db

PLACEHOLDER = "This message was deleted"


def file_draft(kind=AttachmentKind.FILE, caption=""):
    spec = AttachmentSpec(kind=kind, file_name="deck.pdf", storage_uri="/media/attachments/deck.pdf", byte_size=10)
    content_cls = VoiceContent if kind == AttachmentKind.VOICE else FileContent
    return MessageDraft(content_cls(attachments=(spec,), caption=caption))


# ── Create ────────────────────────────────────────────────────
def test_create_text(messages, direct, alice):
    message, created = messages.create(direct, alice, MessageDraft(TextContent("hi")))
    assert created is True
    assert message.text == "hi"
    assert message.delivery_status == DeliveryStatus.SENT


def test_client_id_makes_sends_idempotent(messages, direct, alice):
    draft = MessageDraft(TextContent("hi"), client_id="c-42")
    first, created = messages.create(direct, alice, draft)
    second, created_again = messages.create(direct, alice, draft)

    assert created is True and created_again is False
    assert first.id == second.id
    assert Message.objects.filter(conversation=direct).count() == 1


def test_file_message_stores_attachments(messages, direct, alice):
    message, _ = messages.create(direct, alice, file_draft(caption="our deck"))
    assert message.text == "our deck"
    assert list(message.attachments.values_list("file_name", flat=True)) == ["deck.pdf"]


def test_settings_gate_files_and_voice(messages, direct, alice):
    direct.allow_file_sharing = False
    direct.allow_voice_messages = False
    direct.save()

    with pytest.raises(Forbidden):
        messages.create(direct, alice, file_draft())
    with pytest.raises(Forbidden):
        messages.create(direct, alice, file_draft(kind=AttachmentKind.VOICE))
    messages.create(direct, alice, MessageDraft(TextContent("text still works")))


def test_reply_must_stay_in_conversation(messages, conversations, post, direct, alice, carol):
    other, _ = conversations.get_or_create_direct(alice, carol.id)
    foreign = post(other, alice, "elsewhere")
    local = post(direct, alice, "here")

    with pytest.raises(InvalidArgument):
        messages.create(direct, alice, MessageDraft(TextContent("re"), reply_to=foreign.id))

    reply, _ = messages.create(direct, alice, MessageDraft(TextContent("re"), reply_to=local.id))
    assert reply.reply_to_id == local.id


# ── Listing ───────────────────────────────────────────────────
def test_listing_is_newest_first(messages, post, direct, alice):
    sent = [post(direct, alice, f"m{i}") for i in range(3)]

    listed = messages.list_for_conversation(direct.id)

    assert [m.id for m in listed] == [sent[2].id, sent[1].id, sent[0].id]


def test_deleted_messages_are_left_out(messages, post, direct, alice):
    keep = post(direct, alice, "keep")
    gone = post(direct, alice, "gone")
    messages.soft_delete(gone.id, alice)

    listed = messages.list_for_conversation(direct.id)
    assert [m.id for m in listed] == [keep.id]
    assert listed.count() == 1


# ── Edit ──────────────────────────────────────────────────────
def test_edit_text(messages, post, direct, alice):
    message = post(direct, alice, "helo")

    edited = messages.edit(message.id, alice, " hello ")

    assert edited.text == "hello"
    assert edited.is_edited and edited.edited_at is not None
    audit = MessageAudit.objects.get(message=message)
    assert (audit.event, audit.old_text, audit.new_text) == (AuditEvent.EDIT, "helo", "hello")
    direct.refresh_from_db()
    assert direct.last_message_preview == "hello"


def test_edit_rules(messages, post, direct, alice, bob):
    message = post(direct, alice, "mine")
    with pytest.raises(Forbidden):
        messages.edit(message.id, bob, "theirs")
    with pytest.raises(InvalidArgument):
        messages.edit(message.id, alice, "   ")

    attachment, _ = messages.create(direct, alice, file_draft(caption="caption"))
    with pytest.raises(InvalidArgument):
        messages.edit(attachment.id, alice, "new caption")

    messages.soft_delete(message.id, alice)
    with pytest.raises(Forbidden):
        messages.edit(message.id, alice, "resurrect")

    with pytest.raises(NotFound):
        messages.edit(999999, alice, "nothing")


# ── Delete ────────────────────────────────────────────────────
def test_soft_delete_tombstones(messages, conversations, post, direct, alice):
    earlier = post(direct, alice, "earlier")
    message, _ = messages.create(direct, alice, file_draft(caption="secret"))
    conversations.record_new_message(direct.id, message)

    deleted, changed = messages.soft_delete(message.id, alice)

    assert changed is True
    assert deleted.is_deleted and deleted.deleted_at is not None
    assert deleted.text == PLACEHOLDER
    assert not Attachment.objects.filter(message=message).exists()
    assert MessageAudit.objects.filter(message=message, event=AuditEvent.DELETE, old_text="secret").exists()

    direct.refresh_from_db()
    assert direct.last_message_id == earlier.id
    assert direct.last_message_preview == "earlier"


def test_soft_delete_is_idempotent_and_sender_only(messages, post, direct, alice, bob):
    message = post(direct, alice, "oops")
    with pytest.raises(Forbidden):
        messages.soft_delete(message.id, bob)

    messages.soft_delete(message.id, alice)
    first_deleted_at = Message.objects.get(id=message.id).deleted_at
    again, changed = messages.soft_delete(message.id, alice)

    assert changed is False
    assert again.deleted_at == first_deleted_at
    assert MessageAudit.objects.filter(message=message, event=AuditEvent.DELETE).count() == 1


def test_reply_preview_shows_tombstone(messages, post, direct, alice, bob):
    original = post(direct, alice, "original")
    reply = post(direct, bob, "answer", reply_to=original.id)
    messages.soft_delete(original.id, alice)

    data = MessageSerializer(messages.load(reply.id)).data
    assert data["reply_to"]["text"] == PLACEHOLDER
    assert data["reply_to"]["is_deleted"] is True


# ── Reactions ─────────────────────────────────────────────────
def test_reaction_toggles(messages, post, direct, alice, bob):
    message = post(direct, alice, "ship it")

    _, reactions = messages.toggle_reaction(message.id, bob, "🚀")
    assert [(r.user_id, r.emoji) for r in reactions] == [(bob.id, "🚀")]

    messages.toggle_reaction(message.id, alice, "🚀")
    _, reactions = messages.toggle_reaction(message.id, bob, "🚀")
    assert [(r.user_id, r.emoji) for r in reactions] == [(alice.id, "🚀")]


def test_reaction_rules(messages, post, direct, alice, carol):
    message = post(direct, alice, "hi")
    with pytest.raises(Forbidden):
        messages.toggle_reaction(message.id, carol, "👍")
    with pytest.raises(InvalidArgument):
        messages.toggle_reaction(message.id, alice, " ")

    messages.soft_delete(message.id, alice)
    with pytest.raises(Forbidden):
        messages.toggle_reaction(message.id, alice, "👍")


# ── Receipts ──────────────────────────────────────────────────
def test_mark_many_read_in_direct(messages, post, direct, alice, bob):
    first = post(direct, alice, "one")
    second = post(direct, alice, "two")
    own = post(direct, bob, "mine")

    ids, read_at = messages.mark_many_read(direct.id, bob)

    assert ids == [first.id, second.id]
    assert own.id not in ids
    assert set(Message.objects.filter(id__in=ids).values_list("delivery_status", flat=True)) == {DeliveryStatus.READ}
    assert Receipt.objects.filter(user=bob, read_at=read_at).count() == 2

    again, _ = messages.mark_many_read(direct.id, bob)
    assert again == []


def test_mark_selected_messages_read(messages, post, direct, alice, bob):
    first = post(direct, alice, "one")
    second = post(direct, alice, "two")

    ids, _ = messages.mark_many_read(direct.id, bob, [second.id])

    assert ids == [second.id]
    assert not Receipt.objects.filter(message=first, user=bob).exists()


def test_group_message_is_read_only_when_everyone_read(messages, conversations, post, alice, bob, carol):
    group = conversations.create_group(alice, "Team", [bob.id, carol.id])
    message = post(group, alice, "standup?")

    messages.mark_many_read(group.id, bob)
    assert Message.objects.get(id=message.id).delivery_status != DeliveryStatus.READ

    messages.mark_many_read(group.id, carol)
    assert Message.objects.get(id=message.id).delivery_status == DeliveryStatus.READ


def test_delivery_only_moves_forward(messages, post, direct, alice, bob):
    message = post(direct, alice, "ping")

    messages.mark_delivered(message, [str(bob.id), str(alice.id)])
    assert Message.objects.get(id=message.id).delivery_status == DeliveryStatus.DELIVERED
    assert list(Receipt.objects.filter(message=message).values_list("user_id", flat=True)) == [bob.id]

    messages.mark_many_read(direct.id, bob)
    messages.mark_delivered(message, [str(bob.id)])
    assert Message.objects.get(id=message.id).delivery_status == DeliveryStatus.READ
    receipt = Receipt.objects.get(message=message, user=bob)
    assert receipt.read_at is not None


def test_counters_never_go_negative(conversations, post, direct, alice, bob):
    post(direct, alice, "one")
    for _ in range(3):
        conversations.mark_read(direct.id, bob)
    assert Participant.objects.get(conversation=direct, user=bob).unread_count == 0


def test_expire_older_than(messages, post, direct, alice):
    old = post(direct, alice, "old news")
    Message.objects.filter(id=old.id).update(created_at=timezone.now() - timedelta(days=40))
    fresh = post(direct, alice, "fresh")

    count = messages.expire_older_than(direct, timezone.now() - timedelta(days=30))

    assert count == 1
    assert Message.objects.get(id=old.id).text == PLACEHOLDER
    assert not Message.objects.get(id=fresh.id).is_deleted
