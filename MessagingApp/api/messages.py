# MessagingApp/api/messages.py
from __future__ import annotations

from asgiref.sync import async_to_sync
from rest_framework import permissions, status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from MessagingApp.conf import messaging_setting
from MessagingApp.engine import get_engine
from MessagingApp.errors import InvalidArgument
from MessagingApp.permissions import IsConversationParticipant
from MessagingApp.serializers import EditMessageSerializer, ReactionInputSerializer, validated


class MessagePagination(PageNumberPagination):
    page_size = 50
    page_size_query_param = "page_size"
    max_page_size = 200

    def __init__(self):
        self.page_size = messaging_setting("DEFAULT_PAGE_SIZE")
        self.max_page_size = messaging_setting("MAX_PAGE_SIZE")

    def get_page_number(self, request, paginator):
        raw = request.query_params.get(self.page_query_param) or 1
        try:
            return max(int(raw), 1)
        except (TypeError, ValueError):
            raise InvalidArgument("page must be an integer.")

    def get_paginated_response(self, data):
        return Response({
            "messages": data,
            "pagination": {
                "page": self.page.number,
                "page_size": self.page.paginator.per_page,
                "has_more": self.page.has_next(),
            },
        })


class ConversationMessagesView(APIView):
    """
    GET  /api/chat/conversations/<conversation_id>/messages/?page=&page_size=
    POST /api/chat/conversations/<conversation_id>/messages/
         {type, content, reply_to?, attachments?, client_id?}
    """

    permission_classes = [permissions.IsAuthenticated, IsConversationParticipant]

    def get(self, request, conversation_id):
        paginator = MessagePagination()
        messages = async_to_sync(get_engine().list_messages)(
            conversation_id, request.user, lambda qs: paginator.paginate_queryset(qs, request, view=self)
        )
        return paginator.get_paginated_response(messages)

    def post(self, request, conversation_id):
        message, created = async_to_sync(get_engine().send_message)(
            conversation_id, request.user, request.data
        )
        return Response(message, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)


class MessageDetailView(APIView):
    """
    PATCH  /api/chat/messages/<id>/  {text}
    DELETE /api/chat/messages/<id>/
    """

    permission_classes = [permissions.IsAuthenticated]

    def patch(self, request, message_id):
        data = validated(EditMessageSerializer, request.data)
        message = async_to_sync(get_engine().edit_message)(message_id, request.user, data["text"])
        return Response(message)

    def delete(self, request, message_id):
        async_to_sync(get_engine().delete_message)(message_id, request.user)
        return Response(status=status.HTTP_200_OK)


class MessageReactionView(APIView):
    """POST /api/chat/messages/<id>/reactions/  {emoji}  -> toggles, returns the reaction list."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, message_id):
        data = validated(ReactionInputSerializer, request.data)
        result = async_to_sync(get_engine().react_to_message)(message_id, request.user, data["emoji"])
        return Response({
            "message_id": result["messageId"],
            "conversation_id": result["conversationId"],
            "reactions": result["reactions"],
        })
