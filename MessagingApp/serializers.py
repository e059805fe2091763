# MessagingApp/serializers.py
from rest_framework import serializers

from accounts.users.serializers import UserMiniSerializer
from MessagingApp.conf import messaging_setting
from MessagingApp.errors import InvalidArgument, flatten_detail
from MessagingApp.models import (
    Attachment,
    Conversation,
    ConversationKind,
    Message,
    MessageType,
    Participant,
    Reaction,
)

CONTENT_STRING_TYPES = (MessageType.TEXT, MessageType.EMOJI, MessageType.SYSTEM)


def validated(serializer_class, data):
    """Runs ``serializer_class`` over client input; failures become InvalidArgument."""
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        raise InvalidArgument(flatten_detail(serializer.errors))
    return serializer.validated_data


def format_datetime(value):
    if value is None:
        return None
    return serializers.DateTimeField().to_representation(value)


class AttachmentSerializer(serializers.ModelSerializer):
    type = serializers.SerializerMethodField()

    class Meta:
        model = Attachment
        fields = ("id", "type", "file_name", "storage_uri", "byte_size", "mime_type", "duration_seconds")

    def get_type(self, obj):
        return obj.kind.lower()


class ReactionSerializer(serializers.ModelSerializer):
    user_id = serializers.SerializerMethodField()

    class Meta:
        model = Reaction
        fields = ("emoji", "user_id", "created_at")

    def get_user_id(self, obj):
        return str(obj.user_id)


class ReplyPreviewSerializer(serializers.ModelSerializer):
    """Quoted message under a reply; deleted ones show the tombstone."""
    sender_id = serializers.SerializerMethodField()
    type = serializers.SerializerMethodField()
    text = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = ("id", "sender_id", "type", "text", "is_deleted", "created_at")

    def get_sender_id(self, obj):
        return str(obj.sender_id) if obj.sender_id else None

    def get_type(self, obj):
        return obj.type.lower()

    def get_text(self, obj):
        if obj.is_deleted:
            return messaging_setting("DELETED_PLACEHOLDER")
        return obj.text


class MessageSerializer(serializers.ModelSerializer):
    conversation_id = serializers.SerializerMethodField()
    sender_id = serializers.SerializerMethodField()
    sender = UserMiniSerializer(read_only=True)
    type = serializers.SerializerMethodField()
    content = serializers.SerializerMethodField()
    attachments = AttachmentSerializer(many=True, read_only=True)
    reactions = ReactionSerializer(many=True, read_only=True)
    read_by = serializers.SerializerMethodField()
    reply_to = ReplyPreviewSerializer(read_only=True)
    delivery_status = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = (
            "id",
            "conversation_id",
            "sender_id",
            "sender",
            "type",
            "content",
            "attachments",
            "reactions",
            "read_by",
            "reply_to",
            "client_id",
            "is_edited",
            "edited_at",
            "is_deleted",
            "deleted_at",
            "delivery_status",
            "created_at",
        )
        read_only_fields = fields

    def get_conversation_id(self, obj):
        return str(obj.conversation_id)

    def get_sender_id(self, obj):
        return str(obj.sender_id) if obj.sender_id else None

    def get_type(self, obj):
        return obj.type.lower()

    def get_content(self, obj):
        # text/emoji/system -> string; file/voice -> {caption, attachments}
        if obj.is_deleted or obj.type in CONTENT_STRING_TYPES:
            return obj.text
        return {
            "caption": obj.text,
            "attachments": AttachmentSerializer(obj.attachments.all(), many=True).data,
        }

    def get_read_by(self, obj):
        return [
            {"user_id": str(r.user_id), "read_at": format_datetime(r.read_at)}
            for r in obj.receipts.all()
            if r.read_at is not None
        ]

    def get_delivery_status(self, obj):
        return obj.delivery_status.lower()


class ParticipantSerializer(serializers.ModelSerializer):
    user = UserMiniSerializer(read_only=True)
    online = serializers.SerializerMethodField()

    class Meta:
        model = Participant
        fields = ("user", "role", "joined_at", "last_seen_at", "notifications_enabled", "is_active", "unread_count", "online")

    def get_online(self, obj):
        online_ids = self.context.get("online_ids")
        if online_ids is None:
            return None
        return str(obj.user_id) in online_ids


class ConversationSerializer(serializers.ModelSerializer):
    """
    Conversation summary for the inbox. Expects participants prefetched into
    ``participants_all`` (see ConversationStore); falls back to a query.
    """
    participants = serializers.SerializerMethodField()
    peer = serializers.SerializerMethodField()
    last_message = serializers.SerializerMethodField()
    unread_count = serializers.SerializerMethodField()
    unread_counters = serializers.SerializerMethodField()
    settings = serializers.SerializerMethodField()
    created_by = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = (
            "id",
            "kind",
            "title",
            "created_by",
            "participants",
            "peer",
            "last_message",
            "unread_count",
            "unread_counters",
            "settings",
            "is_active",
            "created_at",
            "updated_at",
        )

    def _members(self, obj):
        members = getattr(obj, "participants_all", None)
        if members is None:
            members = list(obj.participants.select_related("user").order_by("joined_at", "id"))
        return members

    def _viewer_id(self):
        viewer = self.context.get("viewer")
        if viewer is None:
            request = self.context.get("request")
            viewer = getattr(request, "user", None)
        return getattr(viewer, "id", None)

    def get_created_by(self, obj):
        return str(obj.created_by_id)

    def get_participants(self, obj):
        active = [m for m in self._members(obj) if m.is_active]
        return ParticipantSerializer(active, many=True, context=self.context).data

    def get_peer(self, obj):
        if obj.kind != ConversationKind.DIRECT:
            return None
        me_id = self._viewer_id()
        for m in self._members(obj):
            if m.user_id != me_id and m.is_active:
                return UserMiniSerializer(m.user, context=self.context).data
        return None

    def get_last_message(self, obj):
        summary = obj.last_message_summary
        if summary is None:
            return None
        summary["timestamp"] = format_datetime(summary["timestamp"])
        return summary

    def get_unread_count(self, obj):
        me_id = self._viewer_id()
        for m in self._members(obj):
            if m.user_id == me_id:
                return m.unread_count
        return 0

    def get_unread_counters(self, obj):
        return {str(m.user_id): m.unread_count for m in self._members(obj) if m.is_active}

    def get_settings(self, obj):
        return obj.conversation_settings


class ConversationSettingsSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=120, required=False, allow_blank=True)
    allow_file_sharing = serializers.BooleanField(required=False)
    allow_voice_messages = serializers.BooleanField(required=False)
    auto_delete_enabled = serializers.BooleanField(required=False)
    auto_delete_after_days = serializers.IntegerField(required=False, min_value=1, max_value=3650)


class GroupCreateSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=120)
    participant_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)


class DirectCreateSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()


class ParticipantAddSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()


class EditMessageSerializer(serializers.Serializer):
    text = serializers.CharField(allow_blank=True, trim_whitespace=False)


class ReactionInputSerializer(serializers.Serializer):
    emoji = serializers.CharField(max_length=32)


class MarkReadSerializer(serializers.Serializer):
    message_ids = serializers.ListField(child=serializers.IntegerField(), required=False, allow_empty=True)


class CallSignalSerializer(serializers.Serializer):
    conversation_id = serializers.CharField()
    user_id = serializers.UUIDField()
    call_type = serializers.ChoiceField(choices=["voice", "video"], default="voice")
    accepted = serializers.BooleanField(default=False)
