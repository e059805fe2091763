# accounts/admin.py
from asgiref.sync import async_to_sync
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.db.models import Count, Q

from MessagingApp.engine import get_engine
from MessagingApp.presence import get_router
from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    # ---------- List ----------
    list_display = (
        "email",
        "display_name",
        "role",
        "is_staff",
        "is_active",
        "online",
        "conversations",
        "last_seen",
    )
    list_filter = ("role", "is_staff", "is_active")
    search_fields = ("email", "first_name", "last_name", "display_name")
    ordering = ("-date_joined",)
    date_hierarchy = "date_joined"
    actions = ("end_live_sessions",)

    # ---------- Edit form ----------
    fieldsets = (
        (None, {"fields": ("email", "password")}),
        ("Profile", {"fields": ("first_name", "last_name", "display_name", "avatar", "status_message")}),
        ("Role and permissions", {"fields": ("role", "is_active", "is_staff", "is_superuser", "groups", "user_permissions")}),
        ("Presence", {"fields": ("date_joined", "last_seen")}),
    )
    add_fieldsets = (
        (None, {
            "classes": ("wide",),
            "fields": ("email", "password1", "password2", "first_name", "last_name", "role"),
        }),
    )
    readonly_fields = ("date_joined", "last_seen")

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.annotate(
            active_conversations=Count("participations", filter=Q(participations__is_active=True), distinct=True)
        )

    @admin.display(boolean=True, description="Online")
    def online(self, obj):
        return get_router().is_online(obj.id)

    @admin.display(description="Conversations", ordering="active_conversations")
    def conversations(self, obj):
        return obj.active_conversations

    @admin.action(description="End live chat sessions")
    def end_live_sessions(self, request, queryset):
        logout = async_to_sync(get_engine().logout)
        closed = sum(1 for user in queryset if logout(user))
        self.message_user(request, f"{closed} live session(s) closed.")
