# MessagingApp/urls.py
from django.urls import path
from rest_framework.routers import DefaultRouter

from MessagingApp.api.attachments import AttachmentUploadView
from MessagingApp.api.conversations import ConversationViewSet
from MessagingApp.api.messages import ConversationMessagesView, MessageDetailView, MessageReactionView

router = DefaultRouter()
router.register(r"chat/conversations", ConversationViewSet, basename="chat-conversations")

urlpatterns = [
    # Messages of a conversation (page and send)
    path(
        "chat/conversations/<uuid:conversation_id>/messages/",
        ConversationMessagesView.as_view(),
        name="chat-conversation-messages",
    ),

    # Single message: edit / delete / react
    path(
        "chat/messages/<int:message_id>/",
        MessageDetailView.as_view(),
        name="chat-message-detail",
    ),
    path(
        "chat/messages/<int:message_id>/reactions/",
        MessageReactionView.as_view(),
        name="chat-message-reactions",
    ),

    path(
        "chat/attachments/",
        AttachmentUploadView.as_view(),
        name="chat-attachments",
    ),
]

urlpatterns += router.urls
