# MessagingApp/stores/messages.py
"""
Message persistence: create, page, edit, soft delete, reactions and receipts.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count, Q, QuerySet
from django.utils import timezone

from MessagingApp.conf import messaging_setting
from MessagingApp.drafts import MessageDraft, TextContent
from MessagingApp.errors import Forbidden, InvalidArgument, NotFound
from MessagingApp.models import (
    Attachment,
    AuditEvent,
    Conversation,
    DeliveryStatus,
    Message,
    MessageAudit,
    MessageType,
    Participant,
    Reaction,
    Receipt,
    ReceiptStatus,
)
from MessagingApp.stores.conversations import ConversationStore

logger = logging.getLogger(__name__)


class MessageStore:

    def __init__(self, conversations: Optional[ConversationStore] = None):
        self.conversations = conversations or ConversationStore()

    # ── Lookups ───────────────────────────────────────────────────
    def get(self, message_id) -> Message:
        try:
            return Message.objects.select_related("conversation").get(id=message_id)
        except (Message.DoesNotExist, ValidationError, ValueError, TypeError):
            raise NotFound("Message not found.")

    def load(self, message_id) -> Message:
        """Message with everything the serializer touches."""
        message = (
            self._serializable(Message.objects.all())
            .filter(id=message_id)
            .first()
        )
        if message is None:
            raise NotFound("Message not found.")
        return message

    def _serializable(self, qs):
        return qs.select_related("sender", "reply_to").prefetch_related("attachments", "reactions", "receipts")

    def _require_participant(self, conversation_id, user) -> None:
        if not self.conversations.is_participant(conversation_id, user.id):
            raise Forbidden("You are not a participant of this conversation.")

    # ── Create ────────────────────────────────────────────────────
    def create(self, conversation: Conversation, sender, draft: MessageDraft) -> Tuple[Message, bool]:
        """
        Persists a message and its attachments. With a ``client_id`` already
        used in this conversation the existing message is returned and
        ``created`` is False.
        """
        if draft.client_id:
            existing = Message.objects.filter(conversation=conversation, client_id=draft.client_id).first()
            if existing is not None:
                return existing, False

        if draft.type == MessageType.FILE and not conversation.allow_file_sharing:
            raise Forbidden("File sharing is disabled in this conversation.")
        if draft.type == MessageType.VOICE and not conversation.allow_voice_messages:
            raise Forbidden("Voice messages are disabled in this conversation.")

        reply_to_id = None
        if draft.reply_to is not None:
            reply_ok = Message.objects.filter(id=draft.reply_to, conversation=conversation).exists()
            if not reply_ok:
                raise InvalidArgument("reply_to must reference a message in the same conversation.")
            reply_to_id = draft.reply_to

        try:
            with transaction.atomic():
                message = Message.objects.create(
                    conversation=conversation,
                    sender=sender,
                    type=draft.type,
                    text=draft.body,
                    reply_to_id=reply_to_id,
                    client_id=draft.client_id,
                )
                if draft.attachments:
                    Attachment.objects.bulk_create(
                        [
                            Attachment(
                                message=message,
                                kind=a.kind,
                                file_name=a.file_name,
                                storage_uri=a.storage_uri,
                                byte_size=a.byte_size,
                                mime_type=a.mime_type,
                                duration_seconds=a.duration_seconds,
                            )
                            for a in draft.attachments
                        ]
                    )
        except IntegrityError:
            if not draft.client_id:
                raise
            # concurrent send with the same client_id won
            return Message.objects.get(conversation=conversation, client_id=draft.client_id), False

        return message, True

    # ── Read ──────────────────────────────────────────────────────
    def list_for_conversation(self, conversation_id) -> QuerySet:
        """Live messages, newest first. Callers page it and flip each page for display."""
        return self._serializable(
            Message.objects.filter(conversation_id=conversation_id, is_deleted=False)
        ).order_by("-created_at", "-id")

    # ── Edit / delete ─────────────────────────────────────────────
    def edit(self, message_id, requester, new_text: str) -> Message:
        with transaction.atomic():
            message = self._locked(message_id)
            if message.sender_id != requester.id:
                raise Forbidden("You can only edit your own messages.")
            if message.is_deleted:
                raise Forbidden("Deleted messages cannot be edited.")
            if message.type != MessageType.TEXT:
                raise InvalidArgument("Only text messages can be edited.")

            text = TextContent(text=new_text).text

            old_text = message.text
            message.text = text
            message.is_edited = True
            message.edited_at = timezone.now()
            message.save(update_fields=["text", "is_edited", "edited_at", "updated_at"])

            MessageAudit.objects.create(
                message=message, actor=requester, event=AuditEvent.EDIT, old_text=old_text, new_text=text
            )
            if message.conversation.last_message_id == message.id:
                self.conversations.refresh_last_message(message.conversation_id)
        return message

    def soft_delete(self, message_id, requester) -> Tuple[Message, bool]:
        """Returns ``(message, changed)``; deleting twice is a no-op."""
        with transaction.atomic():
            message = self._locked(message_id)
            if message.sender_id != requester.id:
                raise Forbidden("You can only delete your own messages.")
            if message.is_deleted:
                return message, False

            MessageAudit.objects.create(
                message=message, actor=requester, event=AuditEvent.DELETE, old_text=message.text, new_text=""
            )
            self._tombstone(message)
            self.conversations.refresh_last_message(message.conversation_id)
        logger.info("message %s deleted by %s", message.id, requester.id)
        return message, True

    def _tombstone(self, message: Message, when: Optional[datetime] = None) -> None:
        message.text = messaging_setting("DELETED_PLACEHOLDER")
        message.is_deleted = True
        message.deleted_at = when or timezone.now()
        message.save(update_fields=["text", "is_deleted", "deleted_at", "updated_at"])
        message.attachments.all().delete()

    def _locked(self, message_id) -> Message:
        try:
            return Message.objects.select_for_update().select_related("conversation").get(id=message_id)
        except (Message.DoesNotExist, ValidationError, ValueError, TypeError):
            raise NotFound("Message not found.")

    def expire_older_than(self, conversation: Conversation, cutoff: datetime) -> int:
        """Tombstones every live message created before ``cutoff``."""
        now = timezone.now()
        with transaction.atomic():
            expired = list(
                Message.objects.select_for_update().filter(
                    conversation=conversation, is_deleted=False, created_at__lt=cutoff
                )
            )
            for message in expired:
                self._tombstone(message, when=now)
            if expired:
                self.conversations.refresh_last_message(conversation.id)
        return len(expired)

    # ── Reactions ─────────────────────────────────────────────────
    def toggle_reaction(self, message_id, user, emoji: str) -> Tuple[Message, List[Reaction]]:
        emoji = (emoji or "").strip()
        if not emoji:
            raise InvalidArgument("emoji is required.")

        message = self.get(message_id)
        self._require_participant(message.conversation_id, user)
        if message.is_deleted:
            raise Forbidden("Deleted messages cannot be reacted to.")

        removed, _ = Reaction.objects.filter(message=message, user_id=user.id, emoji=emoji).delete()
        if not removed:
            try:
                with transaction.atomic():
                    Reaction.objects.create(message=message, user_id=user.id, emoji=emoji)
            except IntegrityError:
                # a concurrent toggle already added it
                pass

        return message, list(Reaction.objects.filter(message=message).order_by("created_at", "id"))

    # ── Receipts ──────────────────────────────────────────────────
    def mark_many_read(self, conversation_id, user, message_ids: Optional[Iterable[int]] = None) -> Tuple[List[int], datetime]:
        """
        Stamps read receipts for the user on every unread message written by
        someone else, then promotes fully read messages to READ.
        """
        now = timezone.now()
        already_read = Receipt.objects.filter(
            user_id=user.id, read_at__isnull=False, message__conversation_id=conversation_id
        ).values("message_id")

        qs = (
            Message.objects.filter(conversation_id=conversation_id, is_deleted=False)
            .exclude(sender_id=user.id)
            .exclude(id__in=already_read)
        )
        if message_ids is not None:
            qs = qs.filter(id__in=list(message_ids))

        with transaction.atomic():
            ids = list(qs.order_by("created_at", "id").values_list("id", flat=True))
            if not ids:
                return [], now

            Receipt.objects.filter(message_id__in=ids, user_id=user.id, read_at__isnull=True).update(
                status=ReceiptStatus.READ, read_at=now, updated_at=now
            )
            existing = set(
                Receipt.objects.filter(message_id__in=ids, user_id=user.id).values_list("message_id", flat=True)
            )
            Receipt.objects.bulk_create(
                [
                    Receipt(message_id=mid, user_id=user.id, status=ReceiptStatus.READ, delivered_at=now, read_at=now)
                    for mid in ids
                    if mid not in existing
                ],
                ignore_conflicts=True,
            )
            self._promote_read(conversation_id, ids)
        return ids, now

    def _promote_read(self, conversation_id, ids: List[int]) -> None:
        active = set(
            Participant.objects.filter(conversation_id=conversation_id, is_active=True).values_list("user_id", flat=True)
        )
        rows = (
            Message.objects.filter(id__in=ids)
            .annotate(readers=Count("receipts", filter=Q(receipts__read_at__isnull=False, receipts__user_id__in=active)))
            .values_list("id", "sender_id", "readers")
        )
        fully_read = [mid for mid, sender_id, readers in rows if readers >= len(active - {sender_id})]
        if fully_read:
            Message.objects.filter(id__in=fully_read).exclude(delivery_status=DeliveryStatus.READ).update(
                delivery_status=DeliveryStatus.READ
            )

    def mark_delivered(self, message: Message, recipient_ids: Iterable[str]) -> datetime:
        """Delivered receipts for the given recipients; SENT becomes DELIVERED."""
        now = timezone.now()
        recipients = [rid for rid in recipient_ids if str(rid) != str(message.sender_id)]
        if not recipients:
            return now
        Receipt.objects.bulk_create(
            [Receipt(message_id=message.id, user_id=rid, status=ReceiptStatus.DELIVERED, delivered_at=now) for rid in recipients],
            ignore_conflicts=True,
        )
        Message.objects.filter(id=message.id, delivery_status=DeliveryStatus.SENT).update(
            delivery_status=DeliveryStatus.DELIVERED
        )
        return now
