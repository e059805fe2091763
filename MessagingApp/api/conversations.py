# MessagingApp/api/conversations.py
from __future__ import annotations

from asgiref.sync import async_to_sync
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from MessagingApp.engine import get_engine
from MessagingApp.serializers import (
    ConversationSettingsSerializer,
    DirectCreateSerializer,
    GroupCreateSerializer,
    MarkReadSerializer,
    ParticipantAddSerializer,
    validated,
)


class ConversationViewSet(viewsets.ViewSet):
    """
    GET    /api/chat/conversations/                              -> inbox
    GET    /api/chat/conversations/<id>/                         -> one conversation
    POST   /api/chat/conversations/direct/        {user_id}      -> get-or-create (201 | 200)
    POST   /api/chat/conversations/group/         {title, participant_ids}
    POST   /api/chat/conversations/<id>/participants/ {user_id}
    DELETE /api/chat/conversations/<id>/participants/<user_id>/
    PATCH  /api/chat/conversations/<id>/settings/
    POST   /api/chat/conversations/<id>/read/     {message_ids?}
    GET    /api/chat/conversations/<id>/typing/
    """

    permission_classes = [permissions.IsAuthenticated]
    lookup_value_regex = "[0-9a-fA-F-]{36}"

    @property
    def engine(self):
        return get_engine()

    def list(self, request):
        return Response(async_to_sync(self.engine.list_conversations)(request.user))

    def retrieve(self, request, pk=None):
        return Response(async_to_sync(self.engine.get_conversation)(pk, request.user))

    @action(detail=False, methods=["POST"], url_path="direct")
    def direct(self, request):
        data = validated(DirectCreateSerializer, request.data)
        conversation, created = async_to_sync(self.engine.get_or_create_direct)(request.user, data["user_id"])
        return Response(conversation, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)

    @action(detail=False, methods=["POST"], url_path="group")
    def group(self, request):
        data = validated(GroupCreateSerializer, request.data)
        conversation = async_to_sync(self.engine.create_group)(request.user, data["title"], data["participant_ids"])
        return Response(conversation, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["POST"], url_path="participants")
    def participants(self, request, pk=None):
        data = validated(ParticipantAddSerializer, request.data)
        conversation = async_to_sync(self.engine.add_participant)(pk, request.user, data["user_id"])
        return Response(conversation)

    @action(detail=True, methods=["DELETE"], url_path=r"participants/(?P<user_id>[0-9a-fA-F-]{36})")
    def remove_participant(self, request, pk=None, user_id=None):
        result = async_to_sync(self.engine.remove_participant)(pk, request.user, user_id)
        return Response(result)

    @action(detail=True, methods=["PATCH"], url_path="settings")
    def update_settings(self, request, pk=None):
        changes = validated(ConversationSettingsSerializer, request.data)
        conversation = async_to_sync(self.engine.update_settings)(pk, request.user, changes)
        return Response(conversation)

    @action(detail=True, methods=["POST"], url_path="read")
    def read(self, request, pk=None):
        data = validated(MarkReadSerializer, request.data)
        result = async_to_sync(self.engine.mark_read)(pk, request.user, data.get("message_ids"))
        return Response({
            "conversation_id": result["conversationId"],
            "message_ids": result["messageIds"],
            "read_at": result["readAt"],
        })

    @action(detail=True, methods=["GET"], url_path="typing")
    def typing(self, request, pk=None):
        user_ids = async_to_sync(self.engine.typing_users)(pk, request.user)
        return Response({"conversation_id": pk, "user_ids": user_ids})
