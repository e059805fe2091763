# MessagingApp/engine.py
"""
Messaging protocol engine.

Every operation follows the same shape: authorize, mutate through a store
(inside ``database_sync_to_async``), then fan out the resulting state through
the connection router. The consumer awaits these coroutines directly; REST
views call them through ``async_to_sync``.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from channels.db import database_sync_to_async
from django.db import DatabaseError, transaction
from django.utils import timezone

from accounts.models import User
from MessagingApp.conf import messaging_setting
from MessagingApp.drafts import MessageDraft, draft_from_payload, system_draft
from MessagingApp.errors import Internal, InvalidArgument
from MessagingApp.models import MessageType
from MessagingApp.presence import ConnectionRouter, get_router
from MessagingApp.serializers import (
    ConversationSerializer,
    MessageSerializer,
    ReactionSerializer,
    format_datetime,
)
from MessagingApp.stores import ConversationStore, MessageStore

logger = logging.getLogger(__name__)

STATUSES = ("online", "away", "busy", "offline")


class MessagingEngine:

    def __init__(
        self,
        router: Optional[ConnectionRouter] = None,
        conversations: Optional[ConversationStore] = None,
        messages: Optional[MessageStore] = None,
    ):
        self.router = router or get_router()
        self.conversations = conversations or ConversationStore()
        self.messages = messages or MessageStore(self.conversations)

    async def _db(self, fn, *args, **kwargs):
        try:
            return await database_sync_to_async(fn)(*args, **kwargs)
        except DatabaseError as exc:
            logger.exception("storage failure in %s", getattr(fn, "__name__", fn))
            raise Internal("A storage error occurred.") from exc

    # ── Serialization helpers (sync) ──────────────────────────────
    def _message_data(self, message_id) -> dict:
        return MessageSerializer(self.messages.load(message_id)).data

    def _conversation_data(self, conversation_id, viewer) -> dict:
        conversation = self.conversations.load(conversation_id)
        ids = [str(p.user_id) for p in conversation.participants_all]
        context = {"viewer": viewer, "online_ids": set(self.router.online_user_ids(ids))}
        return ConversationSerializer(conversation, context=context).data

    def _conversation_views(self, conversation_id, viewer_ids: Iterable[str]) -> Dict[str, dict]:
        """One rendering per viewer: peer and unread_count are viewer relative."""
        conversation = self.conversations.load(conversation_id)
        online = set(self.router.online_user_ids([p.user_id for p in conversation.participants_all]))
        users = {str(p.user_id): p.user for p in conversation.participants_all}
        return {
            uid: ConversationSerializer(conversation, context={"viewer": users.get(uid), "online_ids": online}).data
            for uid in viewer_ids
        }

    async def _emit_conversation_updated(self, conversation_id, viewer_ids: Iterable[str]) -> None:
        views = await self._db(self._conversation_views, conversation_id, list(viewer_ids))
        for uid, data in views.items():
            await self.router.emit_to_principal(uid, "conversationUpdated", {"conversation": data})

    async def _check_member(self, conversation_id, user) -> List[str]:
        def _members():
            conversation, _ = self.conversations.get_for_participant(conversation_id, user)
            return self.conversations.active_participant_ids(conversation.id)

        return await self._db(_members)

    # ── Presence ──────────────────────────────────────────────────
    def _stamp_last_seen(self, user_id) -> None:
        User.objects.filter(id=user_id).update(last_seen=timezone.now())

    async def _status_changed(self, user_id, status: str, exclude=None) -> dict:
        payload = {"userId": str(user_id), "status": status, "timestamp": format_datetime(timezone.now())}
        await self.router.broadcast("userStatusUpdate", payload, exclude=exclude)
        return payload

    async def connect(self, user, channel_name: str) -> None:
        self.router.register(user.id, channel_name)
        logger.info("user %s connected on %s", user.id, channel_name)
        await self._status_changed(user.id, "online", exclude=user.id)

    async def disconnect(self, user, channel_name: str) -> None:
        if not self.router.unregister(user.id, channel_name):
            return
        logger.info("user %s went offline", user.id)
        await self.router.clear_user(user.id)
        await self._db(self._stamp_last_seen, user.id)
        await self._status_changed(user.id, "offline")

    async def update_status(self, user, status: str) -> dict:
        status = (status or "").strip().lower()
        if status not in STATUSES:
            raise InvalidArgument(f"status must be one of: {', '.join(STATUSES)}")
        self.router.set_status(user.id, status)
        return await self._status_changed(user.id, status)

    async def logout(self, user) -> bool:
        closed = await self.router.close_principal(user.id)
        if closed:
            logger.info("live session of %s closed on logout", user.id)
        return closed

    # ── Conversations ─────────────────────────────────────────────
    async def list_conversations(self, user) -> List[dict]:
        def _load():
            conversations = self.conversations.list_for_principal(user)
            ids = {str(p.user_id) for c in conversations for p in c.participants_all}
            context = {"viewer": user, "online_ids": set(self.router.online_user_ids(ids))}
            return ConversationSerializer(conversations, many=True, context=context).data

        return await self._db(_load)

    async def get_conversation(self, conversation_id, user) -> dict:
        def _load():
            conversation, _ = self.conversations.get_for_participant(conversation_id, user)
            return self._conversation_data(conversation.id, user)

        return await self._db(_load)

    async def join_conversation(self, conversation_id, user) -> dict:
        participants = await self._check_member(conversation_id, user)
        cid = str(conversation_id)
        return {
            "conversationId": cid,
            "onlineUserIds": self.router.online_user_ids(participants),
            "typingUserIds": self.router.typing_users(cid),
        }

    async def leave_conversation(self, conversation_id, user) -> dict:
        await self.router.typing_stop(conversation_id, user.id)
        return {"conversationId": str(conversation_id)}

    async def get_or_create_direct(self, user, other_id) -> Tuple[dict, bool]:
        conversation, created = await self._db(self.conversations.get_or_create_direct, user, other_id)
        data = await self._db(self._conversation_data, conversation.id, user)
        if created:
            await self._emit_conversation_updated(conversation.id, [str(other_id)])
        return data, created

    async def create_group(self, user, title: str, member_ids) -> dict:
        conversation = await self._db(self.conversations.create_group, user, title, member_ids)
        await self._post_system(conversation.id, user, f"{user.get_display_name()} created the group")
        participants = await self._db(self.conversations.active_participant_ids, conversation.id)
        await self._emit_conversation_updated(conversation.id, [p for p in participants if p != str(user.id)])
        return await self._db(self._conversation_data, conversation.id, user)

    async def add_participant(self, conversation_id, actor, user_id) -> dict:
        conversation, added_user, added = await self._db(
            self.conversations.add_participant, conversation_id, actor, user_id
        )
        if added:
            await self._post_system(conversation.id, actor, f"{added_user.get_display_name()} joined the conversation")
            participants = await self._db(self.conversations.active_participant_ids, conversation.id)
            await self._emit_conversation_updated(conversation.id, participants)
        return await self._db(self._conversation_data, conversation.id, actor)

    async def remove_participant(self, conversation_id, actor, user_id) -> dict:
        conversation, removed_user = await self._db(
            self.conversations.remove_participant, conversation_id, actor, user_id
        )
        await self.router.typing_stop(conversation.id, removed_user.id)
        await self._post_system(conversation.id, actor, f"{removed_user.get_display_name()} left the conversation")
        participants = await self._db(self.conversations.active_participant_ids, conversation.id)
        await self._emit_conversation_updated(conversation.id, participants + [str(removed_user.id)])
        return {"conversation_id": str(conversation.id), "user_id": str(removed_user.id)}

    async def update_settings(self, conversation_id, actor, changes: dict) -> dict:
        conversation = await self._db(self.conversations.update_settings, conversation_id, actor, changes)
        participants = await self._db(self.conversations.active_participant_ids, conversation.id)
        await self._emit_conversation_updated(conversation.id, participants)
        return await self._db(self._conversation_data, conversation.id, actor)

    # ── Messages ──────────────────────────────────────────────────
    async def list_messages(self, conversation_id, user, paginate: Optional[Callable] = None) -> List[dict]:
        """
        One page of a conversation, oldest first. ``paginate`` receives the
        newest-first queryset and returns the rows of the requested page.
        """
        def _load():
            conversation, _ = self.conversations.get_for_participant(conversation_id, user)
            qs = self.messages.list_for_conversation(conversation.id)
            if paginate is None:
                rows = list(qs[:messaging_setting("DEFAULT_PAGE_SIZE")])
            else:
                rows = list(paginate(qs))
            rows.reverse()
            return MessageSerializer(rows, many=True).data

        return await self._db(_load)

    def _persist_message(self, conversation_id, sender, draft: Union[MessageDraft, dict], authorize: bool = True):
        with transaction.atomic():
            if authorize:
                conversation, _ = self.conversations.get_for_participant(conversation_id, sender)
            else:
                conversation = self.conversations.get(conversation_id)
            if not isinstance(draft, MessageDraft):
                draft = draft_from_payload(draft)
            message, created = self.messages.create(conversation, sender, draft)
            if created:
                self.conversations.record_new_message(conversation.id, message)
        participants = self.conversations.active_participant_ids(conversation.id)
        return message, created, participants, self._message_data(message.id)

    async def _fan_out_new_message(self, message, participants: List[str], data: dict) -> None:
        cid = str(message.conversation_id)
        reached = await self.router.emit_to_conversation(
            cid, participants, "newMessage", {"message": data, "conversationId": cid}
        )
        if message.type == MessageType.SYSTEM:
            return
        sender_id = str(message.sender_id) if message.sender_id else None
        recipients = [uid for uid in reached if uid != sender_id]
        if not recipients:
            return

        delivered_at = format_datetime(await self._db(self.messages.mark_delivered, message, recipients))
        if sender_id is None:
            return
        for uid in recipients:
            await self.router.emit_to_principal(
                sender_id,
                "messageDelivered",
                {"messageId": message.id, "conversationId": cid, "userId": uid, "deliveredAt": delivered_at},
            )

    async def send_message(self, conversation_id, sender, draft: Union[MessageDraft, dict]) -> Tuple[dict, bool]:
        """
        Returns ``(message, created)``. A replayed ``client_id`` returns the
        stored message without fanning it out again.
        """
        message, created, participants, data = await self._db(self._persist_message, conversation_id, sender, draft)
        if not created:
            return data, False

        logger.debug("message %s stored in %s", message.id, message.conversation_id)
        await self._fan_out_new_message(message, participants, data)
        await self.router.typing_stop(message.conversation_id, sender.id)
        return data, True

    async def _post_system(self, conversation_id, actor, text: str) -> None:
        message, _, participants, data = await self._db(
            self._persist_message, conversation_id, actor, system_draft(text), False
        )
        await self._fan_out_new_message(message, participants, data)

    async def react_to_message(self, message_id, user, emoji: str) -> dict:
        def _toggle():
            message, reactions = self.messages.toggle_reaction(message_id, user, emoji)
            participants = self.conversations.active_participant_ids(message.conversation_id)
            return message, participants, ReactionSerializer(reactions, many=True).data

        message, participants, reactions = await self._db(_toggle)
        cid = str(message.conversation_id)
        payload = {"messageId": message.id, "conversationId": cid, "reactions": reactions}
        await self.router.emit_to_conversation(cid, participants, "reactionUpdated", payload)
        return payload

    async def edit_message(self, message_id, user, text: str) -> dict:
        def _edit():
            message = self.messages.edit(message_id, user, text)
            participants = self.conversations.active_participant_ids(message.conversation_id)
            return message, participants, self._message_data(message.id)

        message, participants, data = await self._db(_edit)
        await self.router.emit_to_conversation(message.conversation_id, participants, "messageUpdated", {"message": data})
        return data

    async def delete_message(self, message_id, user) -> dict:
        def _delete():
            message, changed = self.messages.soft_delete(message_id, user)
            participants = self.conversations.active_participant_ids(message.conversation_id)
            return message, changed, participants

        message, changed, participants = await self._db(_delete)
        cid = str(message.conversation_id)
        payload = {"messageId": message.id, "conversationId": cid, "deletedAt": format_datetime(message.deleted_at)}
        if changed:
            await self.router.emit_to_conversation(cid, participants, "messageDeleted", payload)
        return payload

    async def mark_read(self, conversation_id, user, message_ids: Optional[Iterable[int]] = None) -> dict:
        def _read():
            with transaction.atomic():
                conversation, _ = self.conversations.get_for_participant(conversation_id, user)
                ids, read_at = self.messages.mark_many_read(conversation.id, user, message_ids)
                self.conversations.mark_read(conversation.id, user)
            return str(conversation.id), ids, read_at, self.conversations.active_participant_ids(conversation.id)

        cid, ids, read_at, participants = await self._db(_read)
        payload = {"userId": str(user.id), "conversationId": cid, "messageIds": ids, "readAt": format_datetime(read_at)}
        if ids:
            await self.router.emit_to_conversation(cid, participants, "messagesRead", payload)
        return payload

    # ── Typing ────────────────────────────────────────────────────
    async def typing_start(self, conversation_id, user) -> None:
        participants = await self._check_member(conversation_id, user)
        await self.router.typing_start(conversation_id, user.id, participants)

    async def typing_stop(self, conversation_id, user) -> bool:
        await self._check_member(conversation_id, user)
        return await self.router.typing_stop(conversation_id, user.id)

    async def typing_users(self, conversation_id, user) -> List[str]:
        await self._check_member(conversation_id, user)
        return self.router.typing_users(conversation_id)

    # ── Calls and screen sharing ─────────────────────────────────
    # Signalling only: the media itself never passes through the server.
    async def _relay_to_peer(self, conversation_id, user, peer_id, event: str, payload: dict) -> bool:
        participants = await self._check_member(conversation_id, user)
        peer = str(peer_id)
        if peer == str(user.id) or peer not in participants:
            raise InvalidArgument("The other user is not an active participant of this conversation.")
        payload = {
            "fromUserId": str(user.id),
            "conversationId": str(conversation_id),
            **payload,
            "timestamp": format_datetime(timezone.now()),
        }
        return await self.router.emit_to_principal(peer, event, payload)

    async def call_request(self, conversation_id, user, target_id, call_type: str) -> bool:
        """Rings ``target_id``; False when the callee has no live connection."""
        return await self._relay_to_peer(
            conversation_id, user, target_id, "incomingCall",
            {"fromName": user.get_display_name(), "callType": call_type},
        )

    async def call_response(self, conversation_id, user, caller_id, accepted: bool, call_type: str) -> bool:
        return await self._relay_to_peer(
            conversation_id, user, caller_id, "callResponse",
            {"accepted": bool(accepted), "callType": call_type},
        )

    async def call_end(self, conversation_id, user, peer_id, call_type: str) -> bool:
        return await self._relay_to_peer(conversation_id, user, peer_id, "callEnded", {"callType": call_type})

    async def screen_share(self, conversation_id, user, active: bool) -> List[str]:
        participants = await self._check_member(conversation_id, user)
        event = "screenShareStarted" if active else "screenShareStopped"
        payload = {
            "userId": str(user.id),
            "userName": user.get_display_name(),
            "conversationId": str(conversation_id),
            "timestamp": format_datetime(timezone.now()),
        }
        return await self.router.emit_to_conversation(conversation_id, participants, event, payload, exclude=user.id)


_engine: Optional[MessagingEngine] = None


def get_engine() -> MessagingEngine:
    global _engine
    if _engine is None:
        _engine = MessagingEngine()
    return _engine
