# MessagingApp/consumers.py
from __future__ import annotations

import logging
from typing import Dict

from channels.generic.websocket import AsyncJsonWebsocketConsumer
from rest_framework.exceptions import APIException

from MessagingApp.engine import get_engine
from MessagingApp.errors import InvalidArgument, MessagingError, error_code_for, flatten_detail
from MessagingApp.serializers import CallSignalSerializer, MarkReadSerializer, validated

logger = logging.getLogger(__name__)

UNAUTHORIZED_CLOSE_CODE = 4401
LOGOUT_CLOSE_CODE = 4000

# client event -> (handler, error event)
HANDLERS = {
    "joinConversation": ("_handle_join", "error"),
    "leaveConversation": ("_handle_leave", "error"),
    "sendMessage": ("_handle_send", "messageError"),
    "typingStart": ("_handle_typing_start", "error"),
    "typingStop": ("_handle_typing_stop", "error"),
    "addReaction": ("_handle_reaction", "reactionError"),
    "markAsRead": ("_handle_mark_read", "readError"),
    "updateStatus": ("_handle_status", "error"),
    "callRequest": ("_handle_call_request", "callError"),
    "callResponse": ("_handle_call_response", "callError"),
    "callEnd": ("_handle_call_end", "callError"),
    "screenShareStart": ("_handle_screen_share_start", "error"),
    "screenShareStop": ("_handle_screen_share_stop", "error"),
}


def _pick(payload: Dict, *keys):
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


# ─────────────────────────────────────────────────────────
# Consumer
# ─────────────────────────────────────────────────────────
class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    Envelope: {"type": <event>, "payload": {...}}

      -> Client → Server
        joinConversation   {conversationId}
        leaveConversation  {conversationId}
        sendMessage        {conversationId, type, content, replyTo?, attachments?, clientId?}
        typingStart        {conversationId}
        typingStop         {conversationId}
        addReaction        {messageId, emoji}
        markAsRead         {conversationId, messageIds?}
        updateStatus       {status}
        callRequest        {conversationId, targetUserId, callType}
        callResponse       {conversationId, fromUserId, accepted, callType}
        callEnd            {conversationId, targetUserId, callType}
        screenShareStart   {conversationId}
        screenShareStop    {conversationId}

      <- Server → Client
        ready, conversationJoined, conversationLeft, messageAck,
        newMessage, messageDelivered, userTyping, reactionUpdated,
        messagesRead, userStatusUpdate, messageUpdated, messageDeleted,
        conversationUpdated, incomingCall, callUnavailable, callResponse,
        callEnded, screenShareStarted, screenShareStopped, and {code, message}
        errors as messageError | reactionError | readError | callError | error
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user = None
        self.engine = get_engine()

    async def connect(self):
        user = self.scope.get("user")
        if user is None or not getattr(user, "is_authenticated", False):
            logger.info("ws rejected: %s", self.scope.get("auth_error") or "no credentials")
            await self.close(code=UNAUTHORIZED_CLOSE_CODE)
            return

        self.user = user
        subprotocols = self.scope.get("subprotocols") or []
        await self.accept(subprotocol="jwt" if "jwt" in subprotocols else None)
        await self.engine.connect(user, self.channel_name)
        await self.send_json({"type": "ready", "payload": {"userId": str(user.id)}})

    async def disconnect(self, code):
        if self.user is not None:
            await self.engine.disconnect(self.user, self.channel_name)

    # ── Client input
    async def receive_json(self, content, **kwargs):
        if not isinstance(content, dict):
            await self._send_error("error", InvalidArgument("Messages must be JSON objects."))
            return

        event = content.get("type")
        payload = content.get("payload") or {}
        handler_name, error_event = HANDLERS.get(event, (None, "error"))
        if handler_name is None:
            await self._send_error("error", InvalidArgument(f"Unknown event: {event}"))
            return
        if not isinstance(payload, dict):
            await self._send_error(error_event, InvalidArgument("payload must be an object."))
            return

        try:
            await getattr(self, handler_name)(payload)
        except Exception as exc:
            await self._send_error(error_event, exc)

    def _conversation_id(self, payload: Dict):
        conversation_id = _pick(payload, "conversationId", "conversation_id")
        if not conversation_id:
            raise InvalidArgument("conversationId is required.")
        return str(conversation_id)

    # ── Handlers
    async def _handle_join(self, payload: Dict):
        snapshot = await self.engine.join_conversation(self._conversation_id(payload), self.user)
        await self.send_json({"type": "conversationJoined", "payload": snapshot})

    async def _handle_leave(self, payload: Dict):
        result = await self.engine.leave_conversation(self._conversation_id(payload), self.user)
        await self.send_json({"type": "conversationLeft", "payload": result})

    async def _handle_send(self, payload: Dict):
        conversation_id = self._conversation_id(payload)
        client_id = _pick(payload, "clientId", "client_id")
        body = {
            "type": payload.get("type"),
            "content": payload.get("content"),
            "reply_to": _pick(payload, "replyTo", "reply_to"),
            "attachments": payload.get("attachments"),
            "client_id": client_id,
        }
        body = {k: v for k, v in body.items() if v is not None}

        message, created = await self.engine.send_message(conversation_id, self.user, body)
        await self.send_json({
            "type": "messageAck",
            "payload": {
                "clientId": client_id,
                "messageId": message["id"],
                "conversationId": conversation_id,
                "created": created,
            },
        })

    async def _handle_typing_start(self, payload: Dict):
        await self.engine.typing_start(self._conversation_id(payload), self.user)

    async def _handle_typing_stop(self, payload: Dict):
        await self.engine.typing_stop(self._conversation_id(payload), self.user)

    async def _handle_reaction(self, payload: Dict):
        message_id = _pick(payload, "messageId", "message_id")
        if message_id is None:
            raise InvalidArgument("messageId is required.")
        await self.engine.react_to_message(message_id, self.user, payload.get("emoji") or "")

    async def _handle_mark_read(self, payload: Dict):
        conversation_id = self._conversation_id(payload)
        message_ids = _pick(payload, "messageIds", "message_ids")
        data = validated(MarkReadSerializer, {} if message_ids is None else {"message_ids": message_ids})
        await self.engine.mark_read(conversation_id, self.user, data.get("message_ids"))

    async def _handle_status(self, payload: Dict):
        await self.engine.update_status(self.user, payload.get("status"))

    def _call_signal(self, payload: Dict, *peer_keys) -> Dict:
        return validated(CallSignalSerializer, {
            "conversation_id": self._conversation_id(payload),
            "user_id": _pick(payload, *peer_keys),
            "call_type": _pick(payload, "callType", "call_type") or "voice",
            "accepted": payload.get("accepted", False),
        })

    async def _handle_call_request(self, payload: Dict):
        data = self._call_signal(payload, "targetUserId", "target_user_id")
        rang = await self.engine.call_request(data["conversation_id"], self.user, data["user_id"], data["call_type"])
        if not rang:
            await self.send_json({
                "type": "callUnavailable",
                "payload": {"conversationId": data["conversation_id"], "targetUserId": str(data["user_id"])},
            })

    async def _handle_call_response(self, payload: Dict):
        data = self._call_signal(payload, "fromUserId", "from_user_id")
        await self.engine.call_response(
            data["conversation_id"], self.user, data["user_id"], data["accepted"], data["call_type"]
        )

    async def _handle_call_end(self, payload: Dict):
        data = self._call_signal(payload, "targetUserId", "target_user_id")
        await self.engine.call_end(data["conversation_id"], self.user, data["user_id"], data["call_type"])

    async def _handle_screen_share_start(self, payload: Dict):
        await self.engine.screen_share(self._conversation_id(payload), self.user, True)

    async def _handle_screen_share_stop(self, payload: Dict):
        await self.engine.screen_share(self._conversation_id(payload), self.user, False)

    # ── Fan-out handlers (channel layer)
    async def chat_event(self, event):
        await self.send_json({"type": event["event"], "payload": event["payload"]})

    async def session_logout(self, event):
        await self.close(code=LOGOUT_CLOSE_CODE)

    # ── Errors
    async def _send_error(self, error_event: str, exc: Exception):
        if isinstance(exc, MessagingError):
            message = exc.message
        elif isinstance(exc, APIException):
            message = flatten_detail(exc.detail)
        else:
            logger.exception("unhandled error for user %s", getattr(self.user, "id", None), exc_info=exc)
            message = "Internal error."
        await self.send_json({"type": error_event, "payload": {"code": error_code_for(exc), "message": message}})
