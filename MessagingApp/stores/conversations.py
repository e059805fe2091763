# MessagingApp/stores/conversations.py
"""
Conversation and membership persistence.

Sync ORM code only: the engine runs these methods through
``database_sync_to_async`` and REST views reach them through the engine.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import F, Prefetch
from django.utils import timezone

from accounts.models import User
from MessagingApp.conf import messaging_setting
from MessagingApp.errors import Conflict, Forbidden, InvalidArgument, NotFound
from MessagingApp.models import (
    Conversation,
    ConversationKind,
    Message,
    MessageType,
    Participant,
    ParticipantRole,
    direct_key_for,
)

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = ("allow_file_sharing", "allow_voice_messages", "auto_delete_enabled", "auto_delete_after_days")


def preview_for(message: Message) -> str:
    """Short inbox text for a message."""
    limit = messaging_setting("PREVIEW_LENGTH")
    if message.is_deleted:
        return messaging_setting("DELETED_PLACEHOLDER")[:limit]
    if message.type == MessageType.FILE and not message.text:
        return "[file]"
    if message.type == MessageType.VOICE and not message.text:
        return "[voice message]"
    return (message.text or "")[:limit]


class ConversationStore:

    # ── Lookups ───────────────────────────────────────────────────
    def _active_user(self, user_id) -> User:
        try:
            return User.objects.get(id=user_id, is_active=True)
        except (User.DoesNotExist, ValidationError, ValueError):
            raise NotFound("User not found or inactive.")

    def _conversation(self, conversation_id, for_update: bool = False) -> Conversation:
        qs = Conversation.objects.filter(is_active=True)
        if for_update:
            qs = qs.select_for_update()
        try:
            return qs.get(id=conversation_id)
        except (Conversation.DoesNotExist, ValidationError, ValueError):
            raise NotFound("Conversation not found.")

    def get(self, conversation_id) -> Conversation:
        return self._conversation(conversation_id)

    def get_for_participant(self, conversation_id, user) -> Tuple[Conversation, Participant]:
        conversation = self._conversation(conversation_id)
        participant = Participant.objects.filter(
            conversation=conversation, user_id=user.id, is_active=True
        ).first()
        if participant is None:
            raise Forbidden("You are not a participant of this conversation.")
        return conversation, participant

    def is_participant(self, conversation_id, user_id) -> bool:
        return Participant.objects.filter(
            conversation_id=conversation_id, user_id=user_id, is_active=True
        ).exists()

    def active_participant_ids(self, conversation_id) -> List[str]:
        return [
            str(uid)
            for uid in Participant.objects.filter(
                conversation_id=conversation_id, is_active=True
            ).values_list("user_id", flat=True)
        ]

    def load(self, conversation_id) -> Conversation:
        """Conversation with participants prefetched for serialization."""
        conversation = self._with_members(Conversation.objects.all()).filter(id=conversation_id).first()
        if conversation is None:
            raise NotFound("Conversation not found.")
        return conversation

    def _with_members(self, qs):
        return qs.select_related("created_by", "last_message_sender").prefetch_related(
            Prefetch(
                "participants",
                queryset=Participant.objects.select_related("user").order_by("joined_at", "id"),
                to_attr="participants_all",
            )
        )

    def list_for_principal(self, user) -> List[Conversation]:
        qs = Conversation.objects.filter(
            is_active=True,
            participants__user_id=user.id,
            participants__is_active=True,
        ).distinct()
        qs = self._with_members(qs).order_by(F("last_message_at").desc(nulls_last=True), "-created_at")
        return list(qs)

    # ── Direct ────────────────────────────────────────────────────
    def _find_direct(self, key: str) -> Optional[Conversation]:
        return (
            Conversation.objects.select_for_update()
            .filter(kind=ConversationKind.DIRECT, direct_key=key)
            .first()
        )

    def _reactivate(self, conversation: Conversation, users: Iterable[User]) -> None:
        if not conversation.is_active:
            conversation.is_active = True
            conversation.save(update_fields=["is_active", "updated_at"])

        for user in users:
            participant, created = Participant.objects.select_for_update().get_or_create(
                conversation=conversation,
                user=user,
                defaults={"is_active": True},
            )
            if not created and not participant.is_active:
                participant.is_active = True
                participant.joined_at = timezone.now()
                participant.save(update_fields=["is_active", "joined_at", "updated_at"])

    def _create_direct(self, initiator: User, other: User, key: str) -> Conversation:
        conversation = Conversation.objects.create(
            kind=ConversationKind.DIRECT,
            created_by=initiator,
            title="",
            direct_key=key,
        )
        Participant.objects.create(conversation=conversation, user=initiator, role=ParticipantRole.ADMIN)
        Participant.objects.create(conversation=conversation, user=other, role=ParticipantRole.MEMBER)
        return conversation

    def get_or_create_direct(self, initiator, other_id) -> Tuple[Conversation, bool]:
        """
        One DIRECT conversation per unordered pair, keyed by ``direct_key``.
        A unique violation from a concurrent creator is resolved by looking
        the winner up.
        """
        if str(initiator.id) == str(other_id):
            raise InvalidArgument("You cannot start a conversation with yourself.")
        other = self._active_user(other_id)
        key = direct_key_for(initiator.id, other.id)

        with transaction.atomic():
            conversation = self._find_direct(key)
            if conversation is not None:
                self._reactivate(conversation, (initiator, other))
                return conversation, False

            try:
                with transaction.atomic():
                    conversation = self._create_direct(initiator, other, key)
                logger.info("direct conversation %s created by %s", conversation.id, initiator.id)
                return conversation, True
            except IntegrityError:
                logger.info("direct conversation %s raced; resolving existing", key)

            conversation = self._find_direct(key)
            if conversation is None:
                raise Conflict("Direct conversation could not be created; retry.")
            self._reactivate(conversation, (initiator, other))
            return conversation, False

    # ── Groups ────────────────────────────────────────────────────
    def create_group(self, creator, title: str, member_ids) -> Conversation:
        title = (title or "").strip()
        if not title:
            raise InvalidArgument("Group conversations need a title.")

        wanted = []
        for raw in member_ids:
            uid = str(raw)
            if uid != str(creator.id) and uid not in wanted:
                wanted.append(uid)
        if not wanted:
            raise InvalidArgument("A group needs at least one other participant.")

        members = {str(u.id): u for u in User.objects.filter(id__in=wanted, is_active=True)}
        missing = [uid for uid in wanted if uid not in members]
        if missing:
            raise NotFound(f"Users not found or inactive: {', '.join(missing)}")

        with transaction.atomic():
            conversation = Conversation.objects.create(
                kind=ConversationKind.GROUP,
                created_by=creator,
                title=title,
            )
            Participant.objects.create(conversation=conversation, user=creator, role=ParticipantRole.ADMIN)
            Participant.objects.bulk_create(
                [Participant(conversation=conversation, user=members[uid]) for uid in wanted]
            )
        logger.info("group %s created by %s with %d members", conversation.id, creator.id, len(wanted) + 1)
        return conversation

    def _check_manager(self, conversation: Conversation, actor) -> None:
        if getattr(actor, "is_admin_like", False):
            return
        is_admin = Participant.objects.filter(
            conversation=conversation, user_id=actor.id, is_active=True, role=ParticipantRole.ADMIN
        ).exists()
        if not is_admin:
            raise Forbidden("Only conversation admins can do this.")

    def add_participant(self, conversation_id, actor, user_id) -> Tuple[Conversation, User, bool]:
        with transaction.atomic():
            conversation = self._conversation(conversation_id, for_update=True)
            if conversation.kind != ConversationKind.GROUP:
                raise InvalidArgument("Participants can only be changed in group conversations.")
            self._check_manager(conversation, actor)
            user = self._active_user(user_id)

            participant, created = Participant.objects.select_for_update().get_or_create(
                conversation=conversation, user=user, defaults={"is_active": True}
            )
            if created:
                return conversation, user, True
            if participant.is_active:
                return conversation, user, False

            participant.is_active = True
            participant.joined_at = timezone.now()
            participant.unread_count = 0
            participant.save(update_fields=["is_active", "joined_at", "unread_count", "updated_at"])
            return conversation, user, True

    def remove_participant(self, conversation_id, actor, user_id) -> Tuple[Conversation, User]:
        with transaction.atomic():
            conversation = self._conversation(conversation_id, for_update=True)
            if conversation.kind != ConversationKind.GROUP:
                raise InvalidArgument("Participants can only be changed in group conversations.")
            if str(actor.id) != str(user_id):
                self._check_manager(conversation, actor)

            try:
                participant = Participant.objects.select_for_update().select_related("user").get(
                    conversation=conversation, user_id=user_id, is_active=True
                )
            except (Participant.DoesNotExist, ValidationError, ValueError):
                raise NotFound("Participant not found.")

            participant.is_active = False
            participant.unread_count = 0
            participant.save(update_fields=["is_active", "unread_count", "updated_at"])
            return conversation, participant.user

    def update_settings(self, conversation_id, actor, changes: dict) -> Conversation:
        with transaction.atomic():
            conversation = self._conversation(conversation_id, for_update=True)
            self._check_manager(conversation, actor)

            fields = []
            for name in SETTINGS_FIELDS:
                if name in changes:
                    setattr(conversation, name, changes[name])
                    fields.append(name)
            if "title" in changes:
                if conversation.kind != ConversationKind.GROUP:
                    raise InvalidArgument("Only group conversations have a title.")
                title = (changes["title"] or "").strip()
                if not title:
                    raise InvalidArgument("Group conversations need a title.")
                conversation.title = title
                fields.append("title")

            if fields:
                conversation.save(update_fields=fields + ["updated_at"])
            return conversation

    # ── Counters & summary ────────────────────────────────────────
    def record_new_message(self, conversation_id, message: Message) -> None:
        Conversation.objects.filter(id=conversation_id).update(
            last_message_id=message.id,
            last_message_preview=preview_for(message),
            last_message_sender_id=message.sender_id,
            last_message_at=message.created_at,
            updated_at=timezone.now(),
        )
        Participant.objects.filter(conversation_id=conversation_id, is_active=True).exclude(
            user_id=message.sender_id
        ).update(unread_count=F("unread_count") + 1)

    def refresh_last_message(self, conversation_id) -> None:
        """Rebuilds the inbox summary from the newest non-deleted message."""
        latest = (
            Message.objects.filter(conversation_id=conversation_id, is_deleted=False)
            .order_by("-created_at", "-id")
            .first()
        )
        if latest is None:
            Conversation.objects.filter(id=conversation_id).update(
                last_message_id=None,
                last_message_preview="",
                last_message_sender_id=None,
                last_message_at=None,
            )
            return
        Conversation.objects.filter(id=conversation_id).update(
            last_message_id=latest.id,
            last_message_preview=preview_for(latest),
            last_message_sender_id=latest.sender_id,
            last_message_at=latest.created_at,
        )

    def mark_read(self, conversation_id, user) -> None:
        Participant.objects.filter(conversation_id=conversation_id, user_id=user.id, is_active=True).update(
            unread_count=0,
            last_seen_at=timezone.now(),
        )
