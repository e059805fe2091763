# MessagingApp/models.py
import uuid
from django.conf import settings
from django.db import models
from django.utils import timezone
from django.db.models import Q, UniqueConstraint, CheckConstraint


# --------------------------------------------
# Base
# --------------------------------------------
class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# --------------------------------------------
# Conversation
# --------------------------------------------
class ConversationKind(models.TextChoices):
    DIRECT = "DIRECT", "Direct"
    GROUP = "GROUP", "Group"


def direct_key_for(user_a_id, user_b_id) -> str:
    u1, u2 = sorted([str(user_a_id), str(user_b_id)])
    return f"{u1}:{u2}"


class Conversation(TimeStampedModel):
    """
    - kind: DIRECT (1 to 1) or GROUP
    - direct_key: for DIRECT, "minUserId:maxUserId"; unique, so one direct
      conversation per unordered pair.
    - last_message_*: cached summary for the inbox listing.
    - allow_* / auto_delete_*: per-conversation settings.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    kind = models.CharField(max_length=12, choices=ConversationKind.choices, db_index=True)
    title = models.CharField(max_length=120, blank=True, default="")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="conversations_created"
    )
    is_active = models.BooleanField(default=True, db_index=True)

    direct_key = models.CharField(
        max_length=80,
        unique=True,
        null=True,
        blank=True,
        help_text="Deterministic key for DIRECT conversations ('<user1>:<user2>').",
    )

    # Inbox summary
    last_message_id = models.BigIntegerField(blank=True, null=True, editable=False)
    last_message_preview = models.CharField(max_length=200, blank=True, default="")
    last_message_sender = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    last_message_at = models.DateTimeField(blank=True, null=True, db_index=True)

    # Settings
    allow_file_sharing = models.BooleanField(default=True)
    allow_voice_messages = models.BooleanField(default=True)
    auto_delete_enabled = models.BooleanField(default=False)
    auto_delete_after_days = models.PositiveIntegerField(default=30)

    class Meta:
        indexes = [
            models.Index(fields=["kind", "is_active"], name="conv_kind_active_idx"),
            models.Index(fields=["-last_message_at"], name="conv_last_msg_at_idx"),
        ]

    def __str__(self):
        return f"{self.kind} • {self.title or self.id}"

    @property
    def last_message_summary(self):
        if self.last_message_id is None:
            return None
        return {
            "message_id": self.last_message_id,
            "content_preview": self.last_message_preview,
            "sender_id": str(self.last_message_sender_id) if self.last_message_sender_id else None,
            "timestamp": self.last_message_at,
        }

    @property
    def conversation_settings(self):
        return {
            "allow_file_sharing": self.allow_file_sharing,
            "allow_voice_messages": self.allow_voice_messages,
            "auto_delete_enabled": self.auto_delete_enabled,
            "auto_delete_after_days": self.auto_delete_after_days,
        }


# --------------------------------------------
# Participants
# --------------------------------------------
class ParticipantRole(models.TextChoices):
    ADMIN = "ADMIN", "Admin"
    MEMBER = "MEMBER", "Member"


class Participant(TimeStampedModel):
    """
    - unread_count: this participant's entry of the conversation's unread counters
    - is_active: False once removed; history stays addressable
    """
    id = models.BigAutoField(primary_key=True)
    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name="participants")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="participations")
    role = models.CharField(max_length=10, choices=ParticipantRole.choices, default=ParticipantRole.MEMBER)
    is_active = models.BooleanField(default=True, db_index=True)

    joined_at = models.DateTimeField(default=timezone.now)
    last_seen_at = models.DateTimeField(blank=True, null=True)
    notifications_enabled = models.BooleanField(default=True)

    unread_count = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            UniqueConstraint(fields=["conversation", "user"], name="uniq_participant_per_conversation"),
            CheckConstraint(condition=Q(unread_count__gte=0), name="participant_unread_non_negative"),
        ]
        indexes = [
            models.Index(fields=["user", "is_active"], name="part_user_active_idx"),
            models.Index(fields=["conversation", "role"], name="part_conv_role_idx"),
        ]

    def __str__(self):
        return f"{self.user_id} in {self.conversation_id} ({self.role})"


# --------------------------------------------
# Messages
# --------------------------------------------
class MessageType(models.TextChoices):
    TEXT = "TEXT", "Text"
    FILE = "FILE", "File"
    VOICE = "VOICE", "Voice"
    EMOJI = "EMOJI", "Emoji"
    SYSTEM = "SYSTEM", "System"


class DeliveryStatus(models.TextChoices):
    SENT = "SENT", "Sent"
    DELIVERED = "DELIVERED", "Delivered"
    READ = "READ", "Read"


# Delivery only moves forward along this order
DELIVERY_ORDER = {
    DeliveryStatus.SENT: 0,
    DeliveryStatus.DELIVERED: 1,
    DeliveryStatus.READ: 2,
}


class Message(TimeStampedModel):
    """
    - id: monotonic; breaks created_at ties so ordering is stable.
    - text: body for TEXT/EMOJI/SYSTEM, optional caption for FILE/VOICE,
      tombstone once deleted.
    """
    id = models.BigAutoField(primary_key=True)
    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name="messages")
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="messages_sent"
    )
    type = models.CharField(max_length=10, choices=MessageType.choices, default=MessageType.TEXT, db_index=True)

    text = models.TextField(blank=True, default="")

    reply_to = models.ForeignKey("self", on_delete=models.SET_NULL, null=True, blank=True, related_name="replies")

    client_id = models.CharField(max_length=64, blank=True, null=True, help_text="Idempotency key from client")

    is_edited = models.BooleanField(default=False)
    edited_at = models.DateTimeField(blank=True, null=True)
    is_deleted = models.BooleanField(default=False, db_index=True)
    deleted_at = models.DateTimeField(blank=True, null=True)

    delivery_status = models.CharField(
        max_length=10, choices=DeliveryStatus.choices, default=DeliveryStatus.SENT, db_index=True
    )

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["conversation", "created_at"], name="msg_conv_created_idx"),
            models.Index(fields=["sender", "created_at"], name="msg_sender_created_idx"),
        ]
        constraints = [
            UniqueConstraint(
                fields=["conversation", "client_id"],
                condition=Q(client_id__isnull=False),
                name="uniq_message_conversation_client_id",
            ),
        ]

    def __str__(self):
        base = f"{self.type} in {self.conversation_id}"
        return f"{base} by {self.sender_id or 'system'}"


# --------------------------------------------
# Attachments
# --------------------------------------------
class AttachmentKind(models.TextChoices):
    FILE = "FILE", "File"
    VOICE = "VOICE", "Voice"
    IMAGE = "IMAGE", "Image"


def attachment_upload_to(instance, filename: str) -> str:
    # attachments/<yyyy>/<mm>/<uuid>-<filename>
    now = timezone.now()
    return f"attachments/{now:%Y}/{now:%m}/{uuid.uuid4().hex}-{filename}"


class Attachment(TimeStampedModel):
    id = models.BigAutoField(primary_key=True)
    message = models.ForeignKey(Message, on_delete=models.CASCADE, related_name="attachments")

    kind = models.CharField(max_length=10, choices=AttachmentKind.choices, default=AttachmentKind.FILE)
    file_name = models.CharField(max_length=255)
    storage_uri = models.CharField(max_length=500)
    byte_size = models.PositiveBigIntegerField(default=0)
    mime_type = models.CharField(max_length=120, blank=True, default="")
    duration_seconds = models.FloatField(null=True, blank=True)

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["message"], name="att_message_idx"),
        ]

    def __str__(self):
        return f"att {self.id} of msg {self.message_id}"


# --------------------------------------------
# Reactions
# --------------------------------------------
class Reaction(TimeStampedModel):
    """
    - One row per (message, user, emoji); adding an existing pair removes it.
    """
    id = models.BigAutoField(primary_key=True)
    message = models.ForeignKey(Message, on_delete=models.CASCADE, related_name="reactions")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="reactions")
    emoji = models.CharField(max_length=32)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            UniqueConstraint(fields=["message", "user", "emoji"], name="uniq_reaction_per_user_per_emoji"),
        ]
        indexes = [
            models.Index(fields=["message"], name="react_message_idx"),
        ]

    def __str__(self):
        return f"{self.user_id} {self.emoji} {self.message_id}"


# --------------------------------------------
# Delivery / read receipts
# --------------------------------------------
class ReceiptStatus(models.TextChoices):
    DELIVERED = "DELIVERED", "Delivered"
    READ = "READ", "Read"


class Receipt(TimeStampedModel):
    """Rows with read_at set form the message's readBy set; never removed."""

    id = models.BigAutoField(primary_key=True)
    message = models.ForeignKey(Message, on_delete=models.CASCADE, related_name="receipts")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="receipts")

    status = models.CharField(max_length=12, choices=ReceiptStatus.choices, db_index=True, default=ReceiptStatus.DELIVERED)
    delivered_at = models.DateTimeField(default=timezone.now)
    read_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        constraints = [
            UniqueConstraint(fields=["message", "user"], name="uniq_receipt_per_user"),
        ]
        indexes = [
            models.Index(fields=["user", "status"], name="rcpt_user_status_idx"),
        ]

    def __str__(self):
        return f"rcpt {self.user_id} {self.status} {self.message_id}"


# --------------------------------------------
# Edit / delete audit
# --------------------------------------------
class AuditEvent(models.TextChoices):
    EDIT = "EDIT", "Edit"
    DELETE = "DELETE", "Delete"


class MessageAudit(TimeStampedModel):
    id = models.BigAutoField(primary_key=True)
    message = models.ForeignKey(Message, on_delete=models.CASCADE, related_name="audit_logs")
    actor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    event = models.CharField(max_length=10, choices=AuditEvent.choices)
    old_text = models.TextField(blank=True, default="")
    new_text = models.TextField(blank=True, default="")

    class Meta:
        indexes = [
            models.Index(fields=["message", "event"], name="audit_msg_event_idx"),
        ]

    def __str__(self):
        return f"audit {self.event} msg {self.message_id}"
