# MessagingApp/admin.py
from django.contrib import admin

from .models import (
    Attachment,
    Conversation,
    Message,
    MessageAudit,
    Participant,
    Reaction,
    Receipt,
)


# =========================
# Helpers
# =========================
def _fmt_bytes(n: int) -> str:
    try:
        n = int(n or 0)
    except (TypeError, ValueError):
        return "0 B"
    for unit in ("B", "KB", "MB", "GB"):
        if n < 1024:
            return f"{n} {unit}"
        n //= 1024
    return f"{n} TB"


def _short(text: str, limit: int) -> str:
    t = (text or "").strip()
    return (t[:limit] + "…") if len(t) > limit else t or "-"


# =========================
# Inlines
# =========================
class ParticipantInline(admin.TabularInline):
    model = Participant
    extra = 0
    raw_id_fields = ("user",)
    fields = ("user", "role", "is_active", "unread_count", "joined_at", "last_seen_at", "notifications_enabled")
    readonly_fields = ("unread_count",)


class AttachmentInline(admin.TabularInline):
    model = Attachment
    extra = 0
    fields = ("kind", "file_name", "storage_uri", "mime_type", "size_hum", "duration_seconds")
    readonly_fields = ("size_hum",)

    @admin.display(description="Size")
    def size_hum(self, obj):
        return _fmt_bytes(obj.byte_size)


class ReactionInline(admin.TabularInline):
    model = Reaction
    extra = 0
    raw_id_fields = ("user",)
    fields = ("user", "emoji", "created_at")
    readonly_fields = ("created_at",)


class ReceiptInline(admin.TabularInline):
    model = Receipt
    extra = 0
    raw_id_fields = ("user",)
    fields = ("user", "status", "delivered_at", "read_at")


class MessageAuditInline(admin.TabularInline):
    model = MessageAudit
    extra = 0
    raw_id_fields = ("actor",)
    fields = ("actor", "event", "old_text", "new_text", "created_at")
    readonly_fields = ("created_at",)


# =========================
# Conversation Admin
# =========================
@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ("id", "kind", "title", "created_by", "is_active", "participants_count", "last_message_at")
    list_filter = ("kind", "is_active", "allow_file_sharing", "allow_voice_messages", "auto_delete_enabled")
    search_fields = ("id", "title", "direct_key", "created_by__email")
    date_hierarchy = "created_at"
    raw_id_fields = ("created_by", "last_message_sender")
    inlines = (ParticipantInline,)
    actions = ("archive_conversations", "restore_conversations")

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related("created_by").prefetch_related("participants")

    @admin.display(description="Participants")
    def participants_count(self, obj: Conversation):
        return sum(1 for p in obj.participants.all() if p.is_active)

    @admin.action(description="Archive selected conversations")
    def archive_conversations(self, request, queryset):
        updated = queryset.update(is_active=False)
        self.message_user(request, f"{updated} conversation(s) archived.")

    @admin.action(description="Restore selected conversations")
    def restore_conversations(self, request, queryset):
        updated = queryset.update(is_active=True)
        self.message_user(request, f"{updated} conversation(s) restored.")


# =========================
# Message Admin
# =========================
@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ("id", "conversation", "sender", "type", "short_text", "delivery_status", "is_deleted", "created_at")
    list_filter = ("type", "delivery_status", "is_deleted", "is_edited")
    search_fields = ("id", "text", "client_id", "conversation__title", "sender__email")
    date_hierarchy = "created_at"
    raw_id_fields = ("conversation", "sender", "reply_to")
    inlines = (AttachmentInline, ReactionInline, ReceiptInline, MessageAuditInline)

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related("conversation", "sender")

    @admin.display(description="Text", ordering="text")
    def short_text(self, obj: Message):
        return _short(obj.text, 80)


@admin.register(Participant)
class ParticipantAdmin(admin.ModelAdmin):
    list_display = ("id", "conversation", "user", "role", "is_active", "unread_count", "joined_at")
    list_filter = ("role", "is_active")
    search_fields = ("id", "conversation__title", "conversation__id", "user__email")
    raw_id_fields = ("conversation", "user")

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related("conversation", "user")


@admin.register(MessageAudit)
class MessageAuditAdmin(admin.ModelAdmin):
    list_display = ("id", "message", "actor", "event", "created_at", "old_short", "new_short")
    list_filter = ("event",)
    search_fields = ("id", "message__id", "actor__email", "old_text", "new_text")
    raw_id_fields = ("message", "actor")
    date_hierarchy = "created_at"

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related("message", "actor")

    @admin.display(description="Before")
    def old_short(self, obj):
        return _short(obj.old_text, 60)

    @admin.display(description="After")
    def new_short(self, obj):
        return _short(obj.new_text, 60)
